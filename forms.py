from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField
from wtforms.validators import DataRequired, Email, EqualTo, Length, Optional, URL, ValidationError # Import standard validators.
from models.user import User # Import User model for email validation.

# Flask-WTF reads these forms from either a regular form post or a JSON body.

class RegistrationForm(FlaskForm):
    """
    Form for user registration.
    Includes fields for email, password (with confirmation), and full name.
    Custom validation is included to check if an email is already registered.
    """
    email = StringField('Email', validators=[DataRequired(message="Email is required."), Email(message="Invalid email address.")])
    password = PasswordField('Password', validators=[DataRequired(message="Password is required."), Length(min=6, message="Password must be at least 6 characters long.")])
    confirm_password = PasswordField('Confirm Password', validators=[DataRequired(message="Please confirm your password."), EqualTo('password', message="Passwords must match.")])
    full_name = StringField('Full Name', validators=[DataRequired(message="Full name is required.")])

    def validate_email(self, email):
        """
        Custom validator for the email field.
        Checks if the provided email address already exists in the database.

        Raises:
            ValidationError: If the email is already taken.
        """
        user = User.query.filter_by(email=email.data.lower()).first() # Case-insensitive check
        if user:
            raise ValidationError('That email address is already registered. Please choose a different one or log in.')

class LoginForm(FlaskForm):
    """
    Form for user login.
    Includes fields for email, password, and a "Remember Me" option.
    """
    email = StringField('Email', validators=[DataRequired(message="Email is required."), Email(message="Invalid email address.")])
    password = PasswordField('Password', validators=[DataRequired(message="Password is required.")])
    remember_me = BooleanField('Remember Me')

class ChangePlanForm(FlaskForm):
    """Target plan for POST /api/subscription/change-plan."""
    plan_id = StringField('Plan', validators=[DataRequired(message="New plan ID is required."), Length(max=255)])

class CheckoutForm(FlaskForm):
    """
    Plan to purchase plus optional redirect targets for POST /billing/checkout.
    Redirect targets must also pass is_safe_url in the view.
    """
    plan_id = StringField('Plan', validators=[DataRequired(message="Plan ID is required."), Length(max=255)])
    success_url = StringField('Success URL', validators=[Optional(), URL(require_tld=False, message="Invalid success URL.")])
    cancel_url = StringField('Cancel URL', validators=[Optional(), URL(require_tld=False, message="Invalid cancel URL.")])

class StartStreamForm(FlaskForm):
    """Stream details for POST /api/streams."""
    title = StringField('Title', validators=[Optional(), Length(max=255)])
    link = StringField('Link', validators=[Optional(), Length(max=255)])
    source = StringField('Source', validators=[DataRequired(message="Stream source is required."), Length(max=50)])
    is_live = BooleanField('Live')
    auto_upload = BooleanField('Auto upload')
