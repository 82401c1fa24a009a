"""Read-side of the plan catalog, tier comparison, and the default catalog seed."""
from flask import current_app

from extensions import db
from models.plan import Plan, UNLIMITED

# Catalog used by `flask seed-plans` and served by GET /api/plans when the database is unreachable.
DEFAULT_PLANS = [
    {
        'id': 'free',
        'name': 'FREE',
        'description': 'Perfect for getting started',
        'amount': 0,
        'currency': 'usd',
        'interval': 'month',
        'tier': 0,
        'max_active_streams': 1,
        'max_streams': 3,
        'max_total_seconds_processed': 300,
        'features': ['1 Active Stream', '3 Total Streams', '5 Minutes Processing', 'Basic Support'],
    },
    {
        'id': 'basic_monthly',
        'name': 'Basic',
        'description': 'For regular streamers',
        'amount': 999,
        'currency': 'usd',
        'interval': 'month',
        'tier': 1,
        'max_active_streams': 2,
        'max_streams': 20,
        'max_total_seconds_processed': 7200,
        'features': ['2 Active Streams', '20 Total Streams', '2 Hours Processing', 'Email Support'],
    },
    {
        'id': 'pro_monthly',
        'name': 'Pro',
        'description': 'For content creators',
        'amount': 2999,
        'currency': 'usd',
        'interval': 'month',
        'tier': 2,
        'max_active_streams': 5,
        'max_streams': UNLIMITED,
        'max_total_seconds_processed': 36000,
        'features': ['5 Active Streams', 'Unlimited Streams', '10 Hours Processing', 'Priority Support'],
    },
]


def get_plan(plan_id):
    if not plan_id:
        return None
    return db.session.get(Plan, plan_id)

def get_plan_by_name(name):
    return Plan.query.filter(db.func.upper(Plan.name) == name.upper()).first()

def get_free_plan():
    """The catalog's zero tier, looked up by FREE_PLAN_NAME."""
    return get_plan_by_name(current_app.config.get('FREE_PLAN_NAME', 'FREE'))

def list_active_plans():
    """Purchasable plans, cheapest first."""
    return Plan.query.filter_by(active=True).order_by(Plan.amount.asc(), Plan.id.asc()).all()

def compare_tiers(current, target):
    """
    Orders two plans.

    Uses the explicit `tier` rank when both plans carry one and the ranks differ;
    otherwise falls back to price. Plans sharing a price and rank compare equal.

    Returns:
        int: > 0 when `target` ranks above `current`, < 0 when below, 0 when level.
    """
    if current.tier is not None and target.tier is not None and current.tier != target.tier:
        return target.tier - current.tier
    return (target.amount > current.amount) - (target.amount < current.amount)

def seed_default_plans(plans=None):
    """
    Inserts or updates the default catalog. Safe to run repeatedly.

    Returns:
        tuple: (created_count, updated_count)
    """
    created, updated = 0, 0
    for values in plans or DEFAULT_PLANS:
        plan = db.session.get(Plan, values['id'])
        if plan is None:
            db.session.add(Plan(**values))
            created += 1
        else:
            for field, value in values.items():
                setattr(plan, field, value)
            updated += 1
    db.session.commit()
    current_app.logger.info(f"Plan catalog seeded: {created} created, {updated} updated.")
    return created, updated
