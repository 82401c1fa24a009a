from extensions import db
import bcrypt
from flask_login import UserMixin # For Flask-Login integration (e.g., current_user).
from utils.helpers import utcnow

class User(db.Model, UserMixin):
    """
    Represents a user in the application.

    This model stores user authentication details (email, password), the Stripe
    customer ID used for billing, and the relationship to the user's subscription
    records. A user owns at most one active Subscription at a time; older rows are
    kept (never hard-deleted) with is_active = False.
    UserMixin provides the methods Flask-Login needs (is_authenticated, get_id).
    """
    __tablename__ = 'users' # Specifies the database table name.

    # --- Basic User Information ---
    id = db.Column(db.Integer, primary_key=True) # Unique identifier for the user.
    email = db.Column(db.String(120), unique=True, nullable=False, index=True) # Login email. Must be unique.
    password_hash = db.Column(db.String(128), nullable=True) # bcrypt hash. Nullable for accounts created elsewhere.
    full_name = db.Column(db.String(100), nullable=True) # User's full name.

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=utcnow) # When the user record was created.
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow) # Last update to the user record.

    # --- Billing Information ---
    # Links this user to a customer object in Stripe. Set at first checkout.
    stripe_customer_id = db.Column(db.String(120), unique=True, nullable=True, index=True)

    # --- Relationships ---
    # All subscription rows for the user, active or not (user.subscriptions.filter_by(...)).
    subscriptions = db.relationship('Subscription', backref='user', lazy='dynamic')
    # All stream records created by the user.
    streams = db.relationship('Stream', backref='user', lazy='dynamic')

    def set_password(self, password):
        """
        Hashes the provided password and stores it in `password_hash`.

        Args:
            password (str): The plain-text password to hash.
        """
        # Salt is generated by bcrypt; the hash is stored as UTF-8 text.
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def check_password(self, password):
        """
        Verifies if the provided password matches the stored hashed password.

        Returns:
            bool: True if the password matches, False otherwise (including when no hash is stored).
        """
        if self.password_hash:
            return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))
        return False

    def __repr__(self):
        return f'<User {self.email}>'
