"""
Error taxonomy for the billing core.

Every failure in the plan-change, checkout and usage paths is raised as a
BillingError subclass and rendered at the HTTP boundary by `to_dict()` with
the subclass's status code. Stripe SDK exceptions are translated into these
types by the provider adapter and never reach the routes directly.
"""


class BillingError(Exception):
    """Base class. `code` is machine-readable; `message` is safe to show to end users."""

    status_code = 500
    code = 'BILLING_ERROR'
    retryable = False

    def __init__(self, message, code=None, details=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        # Original (provider) message, kept for operators.
        self.details = details

    def to_dict(self, include_details=False):
        payload = {'success': False, 'error': self.message, 'code': self.code}
        if self.retryable:
            payload['retryable'] = True
        if include_details and self.details:
            payload['details'] = self.details
        return payload


class Unauthenticated(BillingError):
    status_code = 401
    code = 'UNAUTHENTICATED'

    def __init__(self, message='Authentication required.', **kwargs):
        super().__init__(message, **kwargs)


class NotFound(BillingError):
    """A subscription, plan, customer or provider-side object is missing. `resource` names which."""

    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, resource, message=None, **kwargs):
        self.resource = resource
        super().__init__(message or f"{resource.replace('_', ' ').capitalize()} not found.", **kwargs)

    def to_dict(self, include_details=False):
        payload = super().to_dict(include_details)
        payload['resource'] = self.resource
        return payload


class InvalidState(BillingError):
    """A remote object lacks a structurally required field (e.g. a subscription with no line item)."""

    status_code = 500
    code = 'INVALID_STATE'


class Conflict(BillingError):
    """
    The request conflicts with current state: already on the target plan, an
    active paid subscription exists at checkout, or a free-tier placeholder
    was sent down the plan-change path.
    """

    status_code = 400
    code = 'CONFLICT'


class UpstreamFailure(BillingError):
    """The billing provider call itself failed."""

    status_code = 500
    code = 'UPSTREAM_FAILURE'


class ServiceUnavailable(UpstreamFailure):
    """The billing provider timed out, could not be reached, or rate limited us. Safe to retry."""

    status_code = 503
    code = 'SERVICE_UNAVAILABLE'
    retryable = True


class UsageLimitExceeded(BillingError):
    """A usage-consuming action was refused by the plan's limits."""

    status_code = 422
    code = 'USAGE_LIMIT_EXCEEDED'
