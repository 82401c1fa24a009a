"""Checkout guard and the Stripe Checkout / Billing Portal session flows."""
from flask import current_app

from extensions import db, billing_provider
from services.catalog import get_plan
from services.errors import Conflict, NotFound
from services.subscriptions import get_active_subscription


def has_active_paid_subscription(user_id):
    """
    True when the user's active subscription is backed by a real Stripe subscription.
    An empty id or one carrying the free prefix does not count.
    """
    subscription = get_active_subscription(user_id)
    return subscription is not None and subscription.is_paid

def ensure_can_checkout(user_id):
    """
    Refuses a new checkout when the user already pays for a subscription.

    Raises:
        Conflict: code EXISTING_SUBSCRIPTION. The caller should offer plan change or the billing portal instead.
    """
    if has_active_paid_subscription(user_id):
        current_app.logger.warning(f"[Checkout] User {user_id} already has an active paid subscription; refusing checkout.")
        raise Conflict('You already have an active subscription. Change your plan or manage billing from the portal instead.',
                       code='EXISTING_SUBSCRIPTION')

def get_or_create_customer(user):
    """Returns the user's Stripe customer id, creating the Stripe customer on first use."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = billing_provider.create_customer(user.email, name=user.full_name, user_id=user.id)
    user.stripe_customer_id = customer['id']
    db.session.commit()
    current_app.logger.info(f"[Checkout] Created Stripe customer {customer['id']} for user {user.id}.")
    return user.stripe_customer_id

def start_checkout(user, plan_id, success_url, cancel_url):
    """
    Creates a Stripe Checkout session for `plan_id`.

    Returns:
        dict: {'session_id': ..., 'url': ...}

    Raises:
        Conflict: EXISTING_SUBSCRIPTION, or FREE_PLAN_NOT_PURCHASABLE for the free tier.
        NotFound: Unknown or inactive plan.
    """
    ensure_can_checkout(user.id)

    plan = get_plan(plan_id)
    if plan is None or not plan.active:
        raise NotFound('plan', message='Requested plan not found.')
    if plan.is_free:
        raise Conflict('The free plan does not require checkout.', code='FREE_PLAN_NOT_PURCHASABLE')

    customer_id = get_or_create_customer(user)
    session = billing_provider.create_checkout_session(customer_id, plan.id, user.id, success_url, cancel_url)
    current_app.logger.info(f"[Checkout] Session {session['id']} created for user {user.id}, plan {plan.id}.")
    return {'session_id': session['id'], 'url': session['url']}

def start_portal(user, return_url):
    """
    Creates a Stripe Billing Portal session.

    Raises:
        NotFound: The user has never been a Stripe customer.
    """
    if not user.stripe_customer_id:
        current_app.logger.warning(f"[Portal] User {user.id} has no Stripe customer id.")
        raise NotFound('customer', message='No billing information found for your account.')
    portal_session = billing_provider.create_portal_session(user.stripe_customer_id, return_url)
    return {'url': portal_session['url']}
