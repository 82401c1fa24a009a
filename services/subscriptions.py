"""Subscription record store: the single active row per user and the free-tier placeholder."""
import time
from datetime import timedelta

from flask import current_app

from extensions import db
from models.subscription import Subscription
from services.catalog import get_free_plan
from services.errors import NotFound
from utils.helpers import isoformat_utc, utcnow


def get_active_subscription(user_id, for_update=False):
    """
    Returns the user's active Subscription, or None.

    Args:
        user_id (int): The user's id.
        for_update (bool): Take a row lock (SELECT ... FOR UPDATE) held until the
                           current transaction ends. Serializes concurrent plan
                           changes for the same user on databases that support it.
    """
    query = Subscription.query.filter_by(user_id=user_id, is_active=True)
    if for_update:
        query = query.with_for_update()
    return query.first()

def free_subscription_id(user_id):
    prefix = current_app.config.get('FREE_SUBSCRIPTION_PREFIX', 'free_')
    return f"{prefix}{user_id}_{int(time.time() * 1000)}"

def create_free_subscription(user, commit=True):
    """
    Creates the free-tier placeholder for `user`.

    No Stripe object is created. The period runs FREE_PERIOD_DAYS from now.
    The caller must make sure the user has no other active subscription.

    Raises:
        NotFound: The FREE plan is missing from the catalog.
    """
    free_plan = get_free_plan()
    if free_plan is None:
        current_app.logger.error(f"Cannot create free subscription for user {user.id}: FREE plan not found in catalog.")
        raise NotFound('plan', message='FREE plan not found in catalog. Please seed the plan catalog first.')

    now = utcnow()
    subscription = Subscription(
        user_id=user.id,
        plan_id=free_plan.id,
        stripe_subscription_id=free_subscription_id(user.id),
        stripe_customer_id=None, # No Stripe customer for the free tier.
        is_active=True,
        current_period_start=now,
        current_period_end=now + timedelta(days=current_app.config.get('FREE_PERIOD_DAYS', 365)),
        total_seconds_processed=0,
    )
    db.session.add(subscription)
    if commit:
        db.session.commit()
    current_app.logger.info(f"Created free subscription {subscription.stripe_subscription_id} for user {user.id}.")
    return subscription

def ensure_user_has_subscription(user):
    """Returns the user's active subscription, creating the free placeholder when there is none."""
    subscription = get_active_subscription(user.id)
    if subscription is None:
        current_app.logger.info(f"User {user.id} has no subscription, creating free tier.")
        subscription = create_free_subscription(user)
    return subscription

def subscription_summary(subscription):
    """Serializes a subscription with its plan and usage for GET /api/subscription."""
    plan = subscription.plan
    return {
        'subscription': {
            'id': subscription.stripe_subscription_id,
            'status': 'active' if subscription.is_active else 'inactive',
            'is_free': subscription.is_free_placeholder,
            'current_period_start': isoformat_utc(subscription.current_period_start),
            'current_period_end': isoformat_utc(subscription.current_period_end),
        },
        'plan': plan.to_dict(),
        'usage': {
            'total_seconds_processed': subscription.total_seconds_processed,
            'max_total_seconds_processed': plan.max_total_seconds_processed,
            'max_active_streams': plan.max_active_streams,
            'max_streams': plan.max_streams,
        },
    }
