from flask import current_app
from extensions import db # Import the SQLAlchemy instance.
from utils.helpers import utcnow

class Subscription(db.Model):
    """
    Binds a user to a plan for a billing period.

    Tracks the Stripe Subscription ID, the current period bounds and the
    processing-seconds usage counter for that period. A row whose Stripe ID
    carries the free prefix (see Config.FREE_SUBSCRIPTION_PREFIX) is the
    free-tier placeholder: it has no Stripe counterpart and is never mutated
    through Stripe.

    At most one row per user may have is_active = True. The partial unique
    index below makes the database enforce it; writers also take a row lock
    (services.subscriptions.get_active_subscription(for_update=True)) before
    changing the active row.
    """
    __tablename__ = 'subscriptions' # Specifies the database table name.

    id = db.Column(db.Integer, primary_key=True) # Unique identifier for the subscription record.

    # --- Foreign Keys ---
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    plan_id = db.Column(db.String(255), db.ForeignKey('plans.id'), nullable=False, index=True)

    # --- Stripe identifiers ---
    # Stripe Subscription ID, or 'free_<user>_<ms>' for the free placeholder. Unique.
    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=False, index=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True)

    # --- Status and current billing period ---
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)

    # --- Usage ---
    # Seconds of media processed in the current period. Only grows within a period.
    total_seconds_processed = db.Column(db.Integer, nullable=False, default=0)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # --- Relationship to Plan ---
    plan = db.relationship('Plan')

    __table_args__ = (
        # One active subscription per user.
        db.Index('uq_subscriptions_one_active_per_user', 'user_id', unique=True,
                 postgresql_where=db.text('is_active'),
                 sqlite_where=db.text('is_active = 1')),
    )

    @property
    def is_free_placeholder(self):
        """True when this row has no billable Stripe subscription behind it."""
        prefix = current_app.config.get('FREE_SUBSCRIPTION_PREFIX', 'free_')
        return not self.stripe_subscription_id or self.stripe_subscription_id.startswith(prefix)

    @property
    def is_paid(self):
        return not self.is_free_placeholder

    def touch(self):
        """Bumps updated_at without changing anything else."""
        self.updated_at = utcnow()

    def __repr__(self):
        return f'<Subscription {self.user_id} - Plan {self.plan_id} - Active {self.is_active}>'
