"""
Plan-change policy.

Decides how a user's paid subscription moves to another plan and drives Stripe
accordingly:

  downgrade_to_free  Stripe cancels the subscription at period end. The local row
                     keeps the current plan; the reconciler moves the user to the
                     free tier when Stripe reports the deletion.
  upgrade            Price swapped immediately with prorated charging. The local
                     plan id and period bounds are updated from Stripe's response.
  downgrade          Deferred to the next billing boundary with a two-phase
                     subscription schedule. The local row keeps the current plan
                     until the reconciler sees Stripe switch phases.

The active subscription row is read with a row lock and held for the whole
sequence, so two plan changes for the same user cannot interleave their
schedule release/create calls.
"""
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db, billing_provider
from services.billing_provider import first_item_id, period_bounds
from services.catalog import compare_tiers, get_plan
from services.errors import Conflict, InvalidState, NotFound
from services.subscriptions import get_active_subscription
from utils.helpers import isoformat_utc, to_timestamp, utcnow

UPGRADE = 'upgrade'
DOWNGRADE = 'downgrade'
DOWNGRADE_TO_FREE = 'downgrade_to_free'


class PlanChangeResult:
    """Outcome of a successful plan change, rendered as the HTTP response body."""

    success = True

    def __init__(self, change_type, message, effective_date):
        self.change_type = change_type
        self.message = message
        self.effective_date = effective_date

    def to_dict(self):
        return {
            'success': self.success,
            'message': self.message,
            'effective_date': isoformat_utc(self.effective_date),
            'type': self.change_type,
        }

    def __repr__(self):
        return f'<PlanChangeResult {self.change_type} effective {self.effective_date}>'


def classify_change(current_plan, target_plan):
    """
    Returns UPGRADE, DOWNGRADE or DOWNGRADE_TO_FREE.

    A free target is always DOWNGRADE_TO_FREE whatever its price. Otherwise the
    change is an upgrade only when the target ranks strictly above the current
    plan; equal ranks are treated as a downgrade and deferred.
    """
    if target_plan.is_free:
        return DOWNGRADE_TO_FREE
    if compare_tiers(current_plan, target_plan) > 0:
        return UPGRADE
    return DOWNGRADE

def build_downgrade_phases(current_price_id, target_price_id, period_start, period_end):
    """
    Schedule phases for a deferred downgrade: keep the current price for the rest of the
    period, then switch to the target price exactly at the period boundary.
    """
    boundary = to_timestamp(period_end)
    return [
        {
            'items': [{'price': current_price_id, 'quantity': 1}],
            'start_date': to_timestamp(period_start),
            'end_date': boundary,
        },
        {
            'items': [{'price': target_price_id, 'quantity': 1}],
            'start_date': boundary,
        },
    ]

def change_plan(user_id, target_plan_id, now=None):
    """
    Moves the user's active paid subscription to `target_plan_id`.

    Args:
        user_id (int): The calling user.
        target_plan_id (str): Catalog id (Stripe Price ID) of the requested plan.
        now (datetime, optional): Naive UTC "now" used as the effective date of upgrades.

    Returns:
        PlanChangeResult

    Raises:
        NotFound: No active subscription, or the current/target plan is not in the catalog,
                  or Stripe no longer knows the subscription.
        Conflict: The active subscription is the free placeholder (FREE_TIER_UPGRADE) or the
                  target is the current plan (ALREADY_ON_PLAN).
        InvalidState: The Stripe subscription has no priced line item.
        UpstreamFailure / ServiceUnavailable: A Stripe call failed or timed out.
    """
    try:
        return _change_plan(user_id, target_plan_id, now or utcnow())
    except Exception:
        # Releases the row lock; nothing local has been written on any failure path.
        db.session.rollback()
        raise

def _change_plan(user_id, target_plan_id, now):
    subscription = get_active_subscription(user_id, for_update=True)
    if subscription is None:
        current_app.logger.warning(f"[ChangePlan] User {user_id} has no active subscription.")
        raise NotFound('subscription', message='No active subscription found.')

    # The free placeholder has no Stripe subscription to mutate; it must go through checkout.
    if subscription.is_free_placeholder:
        raise Conflict('Cannot change plan from free tier. Please use checkout to subscribe.',
                       code='FREE_TIER_UPGRADE')

    current_plan = get_plan(subscription.plan_id)
    if current_plan is None:
        current_app.logger.error(f"[ChangePlan] User {user_id}: current plan {subscription.plan_id} missing from catalog.")
        raise NotFound('current_plan', message='Current plan not found.')

    target_plan = get_plan(target_plan_id)
    if target_plan is None:
        raise NotFound('plan', message='Requested plan not found.')

    if current_plan.id == target_plan.id:
        raise Conflict('Already on this plan.', code='ALREADY_ON_PLAN')

    change_type = classify_change(current_plan, target_plan)
    current_app.logger.info(
        f"[ChangePlan] User {user_id}: {change_type} from {current_plan.name} ({current_plan.amount}) "
        f"to {target_plan.name} ({target_plan.amount})."
    )

    stripe_subscription = billing_provider.retrieve_subscription(subscription.stripe_subscription_id)
    item_id = first_item_id(stripe_subscription)
    if not item_id:
        current_app.logger.error(f"[ChangePlan] Stripe subscription {subscription.stripe_subscription_id} has no line item.")
        raise InvalidState('Subscription cannot be modified: no subscription item found.')

    if change_type == DOWNGRADE_TO_FREE:
        return _downgrade_to_free(subscription, stripe_subscription)
    if change_type == UPGRADE:
        return _upgrade(subscription, stripe_subscription, item_id, target_plan, now)
    return _schedule_downgrade(subscription, stripe_subscription, current_plan, target_plan)

def _release_pending_schedule(subscription, stripe_subscription):
    """Releases a schedule left by an earlier deferred downgrade. A subscription carries at most one."""
    existing_schedule = stripe_subscription.get('schedule')
    if not existing_schedule:
        return
    schedule_id = existing_schedule if isinstance(existing_schedule, str) else existing_schedule.get('id')
    current_app.logger.info(f"[ChangePlan] Releasing existing schedule {schedule_id} for {subscription.stripe_subscription_id}.")
    billing_provider.release_schedule(schedule_id)

def _downgrade_to_free(subscription, stripe_subscription):
    _release_pending_schedule(subscription, stripe_subscription)
    cancelled = billing_provider.set_cancel_at_period_end(subscription.stripe_subscription_id, True)
    _, period_end = period_bounds(cancelled)
    if period_end is None:
        period_end = period_bounds(stripe_subscription)[1] or subscription.current_period_end

    # The switch to the free plan happens when Stripe reports the deletion at period end.
    subscription.touch()
    _commit_after_remote_change(subscription, 'cancel at period end')

    return PlanChangeResult(
        DOWNGRADE_TO_FREE,
        'Your subscription will be cancelled at the end of the current billing period. '
        'You will then be moved to the free plan.',
        period_end,
    )

def _upgrade(subscription, stripe_subscription, item_id, target_plan, now):
    # A pending downgrade schedule must not outlive the upgrade.
    _release_pending_schedule(subscription, stripe_subscription)
    updated = billing_provider.swap_subscription_price(
        subscription.stripe_subscription_id, item_id, target_plan.id, prorate=True)

    # Stripe recalculates the period on a prorated swap; its response is authoritative.
    period_start, period_end = period_bounds(updated)
    subscription.plan_id = target_plan.id
    if period_start is not None:
        subscription.current_period_start = period_start
    if period_end is not None:
        subscription.current_period_end = period_end
    subscription.touch()
    _commit_after_remote_change(subscription, f'upgrade to {target_plan.id}')

    return PlanChangeResult(
        UPGRADE,
        'Your plan has been upgraded successfully! The prorated amount has been charged.',
        now,
    )

def _schedule_downgrade(subscription, stripe_subscription, current_plan, target_plan):
    period_start, period_end = period_bounds(stripe_subscription)
    period_start = period_start or subscription.current_period_start
    period_end = period_end or subscription.current_period_end
    if period_start is None or period_end is None:
        raise InvalidState('Subscription cannot be scheduled: current billing period is unknown.')

    _release_pending_schedule(subscription, stripe_subscription)

    schedule = billing_provider.create_schedule_from_subscription(subscription.stripe_subscription_id)
    billing_provider.update_schedule_phases(
        schedule['id'],
        build_downgrade_phases(current_plan.id, target_plan.id, period_start, period_end),
    )

    # Plan id stays as-is until the schedule switches phases.
    subscription.touch()
    _commit_after_remote_change(subscription, f'scheduled downgrade to {target_plan.id}')

    return PlanChangeResult(
        DOWNGRADE,
        f'Your plan will be changed to {target_plan.name} at the end of your current billing period.',
        period_end,
    )

def _commit_after_remote_change(subscription, description):
    """
    Commits local changes that follow a Stripe mutation which already succeeded.

    A failure here is not surfaced to the caller: the remote change stands and the
    local row stays stale until the next webhook reconciles it.
    """
    stripe_subscription_id = subscription.stripe_subscription_id
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.critical(
            f"[ChangePlan] Stripe subscription {stripe_subscription_id} was updated ({description}) "
            f"but the local record could not be saved: {e}. Local state is stale until webhook reconciliation.",
            exc_info=True,
        )
