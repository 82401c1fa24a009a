from functools import wraps
from flask import g
from flask_login import current_user
from services.errors import Unauthenticated
from services.usage_guard import enforce_usage

def usage_limits_enforced(f):
    """
    Decorator that runs the usage guard for the current user before the view.

    Raises UsageLimitExceeded (rendered as a 422 by the app-level BillingError handler)
    when the user has no active subscription or any plan limit is already exceeded.
    The passing UsageCheck is left on `g.usage` for the view.
    Place it under @login_required.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            # Normally handled by @login_required first.
            raise Unauthenticated()
        g.usage = enforce_usage(current_user.id)
        return f(*args, **kwargs)
    return decorated_function
