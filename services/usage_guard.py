"""
Usage/limit guard.

Checked before any usage-consuming action (starting a stream). A user without
an active subscription is denied outright; a missing subscription never means
"no limits".
"""
from flask import current_app

from extensions import db
from models.plan import UNLIMITED
from models.stream import Stream
from services.errors import UsageLimitExceeded
from services.subscriptions import get_active_subscription


def limit_exceeded(count, limit):
    """
    True when `count` is strictly above `limit`. The UNLIMITED sentinel (-1) is never exceeded.
    A count equal to the limit is still within it.
    """
    if limit is None or limit == UNLIMITED:
        return False
    return count > limit


class UsageCheck:
    """Current usage against the active plan's limits."""

    def __init__(self, has_subscription, active_streams=0, period_streams=0, seconds_processed=0,
                 max_active_streams=None, max_streams=None, max_total_seconds_processed=None):
        self.has_subscription = has_subscription
        self.active_streams = active_streams
        self.period_streams = period_streams
        self.seconds_processed = seconds_processed
        self.max_active_streams = max_active_streams
        self.max_streams = max_streams
        self.max_total_seconds_processed = max_total_seconds_processed

        if has_subscription:
            self.active_stream_limit_exceeded = limit_exceeded(active_streams, max_active_streams)
            self.total_stream_limit_exceeded = limit_exceeded(period_streams, max_streams)
            self.processing_limit_exceeded = limit_exceeded(seconds_processed, max_total_seconds_processed)
        else:
            # Hard denial.
            self.active_stream_limit_exceeded = True
            self.total_stream_limit_exceeded = True
            self.processing_limit_exceeded = True

    @property
    def allowed(self):
        return not (self.active_stream_limit_exceeded
                    or self.total_stream_limit_exceeded
                    or self.processing_limit_exceeded)

    def to_dict(self):
        return {
            'has_subscription': self.has_subscription,
            'active_streams': self.active_streams,
            'period_streams': self.period_streams,
            'seconds_processed': self.seconds_processed,
            'max_active_streams': self.max_active_streams,
            'max_streams': self.max_streams,
            'max_total_seconds_processed': self.max_total_seconds_processed,
            'active_stream_limit_exceeded': self.active_stream_limit_exceeded,
            'total_stream_limit_exceeded': self.total_stream_limit_exceeded,
            'processing_limit_exceeded': self.processing_limit_exceeded,
        }


def count_active_streams(user_id):
    return Stream.query.filter_by(user_id=user_id, active=True).count()

def count_period_streams(user_id, period_start, period_end):
    """Streams created within [period_start, period_end]. An open bound is not applied."""
    query = Stream.query.filter(Stream.user_id == user_id)
    if period_start is not None:
        query = query.filter(Stream.created_at >= period_start)
    if period_end is not None:
        query = query.filter(Stream.created_at <= period_end)
    return query.count()

def check_usage(user_id):
    """
    Compares the user's current usage with their active plan's limits.

    Returns:
        UsageCheck: With has_subscription False (and every limit flagged) when the
                    user has no active subscription or its plan cannot be resolved.
    """
    subscription = get_active_subscription(user_id)
    plan = subscription.plan if subscription is not None else None
    if plan is None:
        current_app.logger.warning(f"[UsageGuard] User {user_id} has no active subscription/plan; denying.")
        return UsageCheck(has_subscription=False)

    return UsageCheck(
        has_subscription=True,
        active_streams=count_active_streams(user_id),
        period_streams=count_period_streams(user_id, subscription.current_period_start, subscription.current_period_end),
        seconds_processed=subscription.total_seconds_processed or 0,
        max_active_streams=plan.max_active_streams,
        max_streams=plan.max_streams,
        max_total_seconds_processed=plan.max_total_seconds_processed,
    )

def enforce_usage(user_id):
    """
    Raises UsageLimitExceeded unless the user may start another usage-consuming action.

    Returns:
        UsageCheck: The passing check.
    """
    check = check_usage(user_id)
    if not check.has_subscription:
        raise UsageLimitExceeded('An active subscription is required to start a stream.',
                                 code='NO_ACTIVE_SUBSCRIPTION')
    if check.active_stream_limit_exceeded:
        raise UsageLimitExceeded('Maximum limit reached for active streams on your current plan.',
                                 code='ACTIVE_STREAM_LIMIT')
    if check.total_stream_limit_exceeded:
        raise UsageLimitExceeded('Maximum limit reached for created streams in the current billing period.',
                                 code='STREAM_LIMIT')
    if check.processing_limit_exceeded:
        raise UsageLimitExceeded('Processing time for the current billing period has been used up.',
                                 code='PROCESSING_LIMIT')
    return check

def record_processed_seconds(user_id, seconds):
    """
    Adds `seconds` to the active subscription's processed-seconds counter.

    Returns:
        int or None: The new total, or None when the user has no active subscription.
    """
    if seconds < 0:
        raise ValueError('Processed seconds cannot be negative.')
    subscription = get_active_subscription(user_id, for_update=True)
    if subscription is None:
        current_app.logger.warning(f"[UsageGuard] Dropping {seconds}s of usage for user {user_id}: no active subscription.")
        return None
    subscription.total_seconds_processed = (subscription.total_seconds_processed or 0) + int(seconds)
    db.session.commit()
    return subscription.total_seconds_processed
