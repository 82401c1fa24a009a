from flask import current_app
from extensions import db # Import the SQLAlchemy instance from extensions.
from utils.helpers import utcnow

# Sentinel for a limit with no upper bound.
UNLIMITED = -1

class Plan(db.Model):
    """
    Represents a priced service tier offered by the application.

    The primary key is the Stripe Price ID the plan is sold under (the free tier
    uses the literal id 'free' and is never sent to Stripe). Usage limits use -1
    for "unbounded". Plans referenced by an active subscription are only changed
    by administrative catalog edits.
    """
    __tablename__ = 'plans' # Specifies the database table name.

    # --- Plan Identification and Details ---
    id = db.Column(db.String(255), primary_key=True) # Stripe Price ID (or 'free').
    name = db.Column(db.String(100), nullable=False, index=True) # e.g. "FREE", "Basic", "Pro".
    description = db.Column(db.Text, nullable=True)
    amount = db.Column(db.Integer, nullable=False) # Price in minor currency units (cents).
    currency = db.Column(db.String(3), nullable=False, default='usd')
    interval = db.Column(db.String(20), nullable=False, default='month') # 'month' or 'year'.

    # --- Tier ordering ---
    # Optional explicit rank. When both plans in a comparison carry one, it decides
    # upgrade vs. downgrade instead of the price (see services.catalog.compare_tiers).
    tier = db.Column(db.Integer, nullable=True)

    # --- Usage Limits (-1 = unbounded) ---
    max_active_streams = db.Column(db.Integer, nullable=False, default=UNLIMITED) # Concurrent active streams.
    max_streams = db.Column(db.Integer, nullable=False, default=UNLIMITED) # Streams created per billing period.
    max_total_seconds_processed = db.Column(db.Integer, nullable=False, default=UNLIMITED) # Processing seconds per period.

    # --- Features ---
    # Marketing feature list, stored as a JSON list of strings.
    features = db.Column(db.JSON, nullable=True)

    # Hidden from the public catalog when False.
    active = db.Column(db.Boolean, nullable=False, default=True)

    # --- Timestamps ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_free(self):
        """
        True for the zero tier: the catalog name marks it as FREE (whatever its amount),
        or it costs nothing.
        """
        free_name = current_app.config.get('FREE_PLAN_NAME', 'FREE')
        return (self.name or '').upper() == free_name.upper() or self.amount == 0

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'amount': self.amount,
            'currency': self.currency,
            'interval': self.interval,
            'tier': self.tier,
            'max_active_streams': self.max_active_streams,
            'max_streams': self.max_streams,
            'max_total_seconds_processed': self.max_total_seconds_processed,
            'features': self.features or [],
        }

    def __repr__(self):
        return f'<Plan {self.id} {self.name} - {self.amount} {self.currency}>'
