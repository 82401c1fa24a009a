from flask import Blueprint, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import IntegrityError

from forms import LoginForm, RegistrationForm
from models.user import User
from extensions import db
from services.errors import NotFound
from services.subscriptions import create_free_subscription, ensure_user_has_subscription
from utils.helpers import form_error_response

# Blueprint for authentication-related routes.
# Registration, login and logout only; the billing endpoints rely on Flask-Login's current_user.
auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

@auth_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """Returns a CSRF token for API clients to send back as `csrf_token` in form or JSON bodies."""
    return jsonify({'csrf_token': generate_csrf()})

# Route for user registration.
@auth_bp.route('/register', methods=['POST'])
def register():
    """
    Creates a user and their free-tier placeholder subscription, then logs them in.
    Both rows are written in one transaction: a user never exists without a subscription.
    """
    if current_user.is_authenticated:
        return jsonify({'success': False, 'error': 'Already logged in.', 'code': 'ALREADY_AUTHENTICATED'}), 400

    form = RegistrationForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    new_user = User(email=form.email.data.lower(), full_name=form.full_name.data)
    new_user.set_password(form.password.data) # Hash the password for secure storage

    try:
        db.session.add(new_user)
        db.session.flush() # Assigns new_user.id for the subscription row.
        subscription = create_free_subscription(new_user, commit=False)
        db.session.commit()
    except IntegrityError:
        # Unique constraint on email lost a race with a concurrent registration.
        db.session.rollback()
        current_app.logger.warning(f"Registration failed for email {form.email.data}: email already exists (IntegrityError).")
        return jsonify({'success': False, 'error': 'That email address is already registered.', 'code': 'EMAIL_TAKEN'}), 400
    except Exception:
        db.session.rollback()
        raise

    login_user(new_user)
    current_app.logger.info(f"New user registered: {new_user.email} (free subscription {subscription.stripe_subscription_id}).")
    return jsonify({'success': True, 'user': {'id': new_user.id, 'email': new_user.email}}), 201

# Route for user login.
@auth_bp.route('/login', methods=['POST'])
def login():
    """Authenticates the user by email and password and starts a Flask-Login session."""
    form = LoginForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    user = User.query.filter_by(email=form.email.data.lower()).first()
    if user is None or not user.check_password(form.password.data):
        current_app.logger.warning(f"Failed login attempt for email: {form.email.data} due to invalid credentials.")
        return jsonify({'success': False, 'error': 'Invalid email or password.', 'code': 'INVALID_CREDENTIALS'}), 401

    # 'remember' makes the session cookie persistent.
    login_user(user, remember=form.remember_me.data)
    try:
        # Accounts created before the free tier existed get their placeholder now.
        ensure_user_has_subscription(user)
    except NotFound as e:
        current_app.logger.warning(f"User {user.id} logged in without a subscription: {e.message}")
    current_app.logger.info(f"User {user.email} logged in successfully.")
    return jsonify({'success': True, 'user': {'id': user.id, 'email': user.email}})

# Route for user logout.
@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """Logs out the current user."""
    user_email = current_user.email # Captured before the session is cleared.
    logout_user()
    current_app.logger.info(f"User {user_email} logged out.")
    return jsonify({'success': True})
