import pytest
from datetime import timedelta
from app import create_app
from config import Config
from extensions import db as _db, webhook_log # Alias to avoid fixture name conflict
from models.plan import Plan
from models.subscription import Subscription
from models.user import User
from services.catalog import seed_default_plans
from utils.helpers import to_timestamp, utcnow

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:' # Use in-memory SQLite for tests
    WTF_CSRF_ENABLED = False # Disable CSRF for form testing convenience
    SECRET_KEY = 'test-secret-key-for-forms' # WTForms/Flask-Login require a SECRET_KEY for session context
    SITE_URL = 'http://localhost:5000'
    STRIPE_SECRET_KEY = 'sk_test_dummy' # Never used: every Stripe call is patched in tests.
    STRIPE_WEBHOOK_SECRET = 'whsec_test'
    WEBHOOK_LOG_ENDPOINT_ENABLED = True
    EXPOSE_ERROR_DETAILS = False

@pytest.fixture(scope='session')
def app():
    """
    Session-wide test Flask application.
    Ensures the app is created once per test session with TestConfig.
    """
    app_instance = create_app(config_class=TestConfig)
    return app_instance

@pytest.fixture(scope='function')
def app_context(app):
    """
    Function-scoped application context.
    Pushes an app context before each test that needs it and pops it afterwards.
    Requests made by the test client while it is pushed share its database session.
    """
    with app.app_context():
        yield

@pytest.fixture(scope='function')
def db(app_context):
    """
    Function-scoped database fixture.
    Creates all database tables before each test and drops them afterwards.
    """
    _db.create_all() # Create tables based on models
    yield _db          # Provide the database session/object to the test
    _db.session.remove() # Ensure session is closed
    _db.drop_all()     # Drop all tables to clean up

@pytest.fixture(scope='function')
def client(app):
    """Test client. Function-scoped so a login cookie never leaks between tests."""
    return app.test_client()

@pytest.fixture(scope='function')
def event_log():
    """The process-wide webhook log, emptied before and after the test."""
    webhook_log.clear()
    yield webhook_log
    webhook_log.clear()

@pytest.fixture
def plans(db):
    """Seeds the default catalog (free / basic_monthly / pro_monthly) and returns it keyed by id."""
    seed_default_plans()
    return {plan.id: plan for plan in Plan.query.all()}

@pytest.fixture
def make_user(db):
    def _make_user(email='streamer@example.com', password='password123', full_name='Test Streamer', stripe_customer_id=None):
        user = User(email=email, full_name=full_name, stripe_customer_id=stripe_customer_id)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user

@pytest.fixture
def make_subscription(db):
    """
    Inserts a subscription row. Defaults to an active paid subscription on basic_monthly
    whose period started 10 days ago and ends in 20.
    """
    def _make_subscription(user, plan_id='basic_monthly', stripe_subscription_id='sub_123',
                           is_active=True, period_start=None, period_end=None, seconds_processed=0):
        now = utcnow().replace(microsecond=0)
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan_id,
            stripe_subscription_id=stripe_subscription_id,
            stripe_customer_id=user.stripe_customer_id,
            is_active=is_active,
            current_period_start=period_start or now - timedelta(days=10),
            current_period_end=period_end or now + timedelta(days=20),
            total_seconds_processed=seconds_processed,
        )
        db.session.add(subscription)
        db.session.commit()
        return subscription
    return _make_subscription

@pytest.fixture
def stripe_subscription():
    """
    Builds a dict shaped like a Stripe Subscription (dict access is all the code relies on).
    Period bounds are taken from the local row when given.
    """
    def _stripe_subscription(local=None, subscription_id='sub_123', price=None, item_id='si_123',
                             period_start=None, period_end=None, status='active', schedule=None,
                             customer='cus_123', user_id=None, cancel_at_period_end=False):
        if local is not None:
            subscription_id = local.stripe_subscription_id
            price = price or local.plan_id
            period_start = period_start or local.current_period_start
            period_end = period_end or local.current_period_end
        now = utcnow().replace(microsecond=0)
        period_start = period_start or now - timedelta(days=10)
        period_end = period_end or now + timedelta(days=20)
        price = price or 'basic_monthly'
        items = [{'id': item_id, 'price': {'id': price}}] if item_id else []
        return {
            'id': subscription_id,
            'object': 'subscription',
            'status': status,
            'customer': customer,
            'schedule': schedule,
            'cancel_at_period_end': cancel_at_period_end,
            'current_period_start': to_timestamp(period_start),
            'current_period_end': to_timestamp(period_end),
            'metadata': {'userId': str(user_id)} if user_id is not None else {},
            'items': {'data': items},
        }
    return _stripe_subscription

@pytest.fixture
def login(client):
    """Logs `user` into the test client by writing Flask-Login's session keys."""
    def _login(user):
        with client.session_transaction() as sess:
            sess['_user_id'] = str(user.id)
            sess['_fresh'] = True
    return _login
