"""
Period-rollover reconciler.

Applies Stripe webhook events to the local subscription records. This is where
deferred plan changes land: a scheduled downgrade shows up as
customer.subscription.updated when the schedule switches phases, and a
downgrade-to-free shows up as customer.subscription.deleted at period end.

Every event, handled or not, is recorded in the process-wide webhook log.
"""
import time

from flask import current_app

from extensions import db, webhook_log
from models.subscription import Subscription
from models.user import User
from services.billing_provider import first_item_price_id, period_bounds
from services.catalog import get_plan
from services.errors import NotFound
from services.subscriptions import create_free_subscription, get_active_subscription

# Stripe statuses that grant access.
ACTIVE_STATUSES = ('active', 'trialing')


def reconcile_event(event):
    """
    Dispatches a verified Stripe event to its handler.

    Returns:
        str: A short outcome label ('created', 'updated', 'ignored', ...).

    Raises:
        Whatever the handler raised, after rolling back and logging the failure. The
        webhook route answers with a 5xx so Stripe redelivers the event.
    """
    event_id = event.get('id', 'unknown_event_id')
    event_type = event.get('type', 'unknown')
    started = time.monotonic()
    handler = _HANDLERS.get(event_type)

    try:
        if handler is None:
            current_app.logger.info(f"[Webhook] Event {event_id}: unhandled type '{event_type}'.")
            outcome = 'ignored'
        else:
            outcome = handler(event['data']['object'])
    except Exception as e:
        db.session.rollback()
        webhook_log.record({
            'event_id': event_id,
            'event_type': event_type,
            'processed': False,
            'error': str(e),
            'processing_time_ms': _elapsed_ms(started),
        })
        current_app.logger.error(f"[Webhook] Event {event_id} ({event_type}) failed: {e}", exc_info=True)
        raise

    webhook_log.record({
        'event_id': event_id,
        'event_type': event_type,
        'processed': True,
        'processing_time_ms': _elapsed_ms(started),
    })
    current_app.logger.info(f"[Webhook] Event {event_id} ({event_type}) processed: {outcome}.")
    return outcome

def _elapsed_ms(started):
    return round((time.monotonic() - started) * 1000, 2)

def _metadata_user_id(obj):
    metadata = obj.get('metadata') or {}
    return metadata.get('userId') or obj.get('client_reference_id')

def _resolve_user(obj):
    """Finds the local user for a Stripe object: metadata userId first, then the Stripe customer id."""
    user_id = _metadata_user_id(obj)
    if user_id:
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            user = None
        if user is not None:
            return user
    customer_id = obj.get('customer')
    if customer_id:
        return User.query.filter_by(stripe_customer_id=customer_id).first()
    return None

def _deactivate_other_active(user_id, keep):
    """Clears is_active on the user's current active row unless it is `keep`. Flushes before returning."""
    current = get_active_subscription(user_id, for_update=True)
    if current is not None and current is not keep:
        kind = 'free placeholder' if current.is_free_placeholder else 'paid subscription'
        current_app.logger.info(f"[Webhook] Deactivating {kind} {current.stripe_subscription_id} for user {user_id}.")
        current.is_active = False
        current.touch()
        db.session.flush()

def _period_advanced(record, period_start):
    return period_start is not None and (record.current_period_start is None or period_start > record.current_period_start)

def _period_regressed(record, period_start):
    return (period_start is not None and record.current_period_start is not None
            and period_start < record.current_period_start)

def handle_subscription_created(stripe_subscription):
    user = _resolve_user(stripe_subscription)
    if user is None:
        raise NotFound('user', message=f"No user for Stripe subscription {stripe_subscription.get('id')}.")

    price_id = first_item_price_id(stripe_subscription)
    plan = get_plan(price_id)
    if plan is None:
        raise NotFound('plan', message=f"Price {price_id} is not in the plan catalog.")

    period_start, period_end = period_bounds(stripe_subscription)
    is_active = stripe_subscription.get('status') in ACTIVE_STATUSES
    record = Subscription.query.filter_by(stripe_subscription_id=stripe_subscription['id']).first()

    if is_active:
        _deactivate_other_active(user.id, keep=record)

    outcome = 'updated'
    if record is None:
        record = Subscription(user_id=user.id, stripe_subscription_id=stripe_subscription['id'])
        db.session.add(record)
        outcome = 'created'
        record.total_seconds_processed = 0
    elif _period_advanced(record, period_start):
        current_app.logger.info(f"[Webhook] Period rollover for {record.stripe_subscription_id}; resetting usage counter.")
        record.total_seconds_processed = 0

    record.stripe_customer_id = stripe_subscription.get('customer')
    record.plan_id = plan.id
    record.is_active = is_active
    # A late redelivery must not move the period backwards.
    if outcome == 'created' or not _period_regressed(record, period_start):
        record.current_period_start = period_start
        record.current_period_end = period_end

    if not user.stripe_customer_id and stripe_subscription.get('customer'):
        user.stripe_customer_id = stripe_subscription['customer']

    db.session.commit()
    return outcome

def handle_subscription_updated(stripe_subscription):
    record = Subscription.query.filter_by(stripe_subscription_id=stripe_subscription['id']).first()
    if record is None:
        # Never saw the creation event; treat it as one.
        return handle_subscription_created(stripe_subscription)

    if stripe_subscription.get('cancel_at_period_end'):
        # Downgrade-to-free pending; the deletion event at period end finishes it.
        current_app.logger.info(f"[Webhook] Subscription {record.stripe_subscription_id} will cancel at period end.")
        record.touch()
        db.session.commit()
        return 'cancel_scheduled'

    price_id = first_item_price_id(stripe_subscription)
    plan = get_plan(price_id)
    if plan is None:
        raise NotFound('plan', message=f"Price {price_id} is not in the plan catalog.")

    period_start, period_end = period_bounds(stripe_subscription)
    is_active = stripe_subscription.get('status') in ACTIVE_STATUSES

    # A new billing period starts a fresh usage counter.
    if _period_advanced(record, period_start):
        current_app.logger.info(f"[Webhook] Period rollover for {record.stripe_subscription_id}; resetting usage counter.")
        record.total_seconds_processed = 0

    if is_active and not record.is_active:
        _deactivate_other_active(record.user_id, keep=record)

    if record.plan_id != plan.id:
        current_app.logger.info(f"[Webhook] Subscription {record.stripe_subscription_id} plan {record.plan_id} -> {plan.id}.")
    record.plan_id = plan.id
    record.is_active = is_active
    if period_start is not None:
        record.current_period_start = period_start
    if period_end is not None:
        record.current_period_end = period_end
    if stripe_subscription.get('customer'):
        record.stripe_customer_id = stripe_subscription['customer']
    record.touch()
    db.session.commit()
    return 'updated'

def handle_subscription_deleted(stripe_subscription):
    record = Subscription.query.filter_by(stripe_subscription_id=stripe_subscription['id']).first()
    if record is None:
        current_app.logger.warning(f"[Webhook] Deleted subscription {stripe_subscription['id']} has no local record.")
        return 'ignored'

    was_active = record.is_active
    record.is_active = False
    record.touch()
    db.session.flush()

    # Moves the user onto the free tier.
    if was_active and get_active_subscription(record.user_id) is None:
        create_free_subscription(record.user, commit=False)

    db.session.commit()
    return 'deactivated'

def handle_checkout_completed(session):
    """Links the Stripe customer to the user. Access is granted by the subscription events, not here."""
    user = _resolve_user(session)
    if user is None:
        current_app.logger.warning(f"[Webhook] Checkout session {session.get('id')} has no matching user.")
        return 'ignored'
    customer_id = session.get('customer')
    if customer_id and user.stripe_customer_id != customer_id:
        user.stripe_customer_id = customer_id
        db.session.commit()
        return 'customer_linked'
    return 'acknowledged'


_HANDLERS = {
    'customer.subscription.created': handle_subscription_created,
    'customer.subscription.updated': handle_subscription_updated,
    'customer.subscription.deleted': handle_subscription_deleted,
    'checkout.session.completed': handle_checkout_completed,
}
