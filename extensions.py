from flask_sqlalchemy import SQLAlchemy # ORM for database interactions.
from flask_login import LoginManager    # Resolves the calling user from the session.

from services.billing_provider import StripeBillingProvider
from utils.event_log import WebhookEventLog

# Initialize SQLAlchemy.
# Bound to the Flask app in the application factory (create_app in app.py) via db.init_app(app).
db = SQLAlchemy()

# Initialize Flask-Login's LoginManager.
# Configured in create_app; its unauthorized handler returns the JSON 401 shape.
login_manager = LoginManager()

# Adapter over the Stripe API.
# Configured in create_app with the API key, HTTP timeout and retry policy.
billing_provider = StripeBillingProvider()

# Process-wide webhook event log.
# Sized from WEBHOOK_LOG_MAX_ENTRIES in create_app; lives for the life of the process and is never persisted.
webhook_log = WebhookEventLog()
