import stripe # Stripe Python library for payment processing.
from flask import current_app

from services.errors import NotFound, ServiceUnavailable, UpstreamFailure
from utils.helpers import utc_from_timestamp


def first_item_id(stripe_subscription):
    """
    Returns the id of the first priced line item on a Stripe subscription, or None.
    A subscription cannot be repriced without it.
    """
    items = (stripe_subscription.get('items') or {}).get('data') or []
    if not items:
        return None
    return items[0].get('id')

def first_item_price_id(stripe_subscription):
    """Returns the price id of the first line item on a Stripe subscription, or None."""
    items = (stripe_subscription.get('items') or {}).get('data') or []
    if not items or not items[0].get('price'):
        return None
    return items[0]['price'].get('id')

def period_bounds(stripe_subscription):
    """
    Extracts the current billing period from a Stripe subscription as naive UTC datetimes.

    Older API versions expose current_period_start/end on the subscription itself;
    newer ones moved them onto each subscription item. Subscription-level values win
    when present, otherwise the first item's values are used.

    Returns:
        tuple: (period_start, period_end), either of which may be None.
    """
    start = stripe_subscription.get('current_period_start')
    end = stripe_subscription.get('current_period_end')
    if start is None or end is None:
        items = (stripe_subscription.get('items') or {}).get('data') or []
        if items:
            start = start if start is not None else items[0].get('current_period_start')
            end = end if end is not None else items[0].get('current_period_end')
    return utc_from_timestamp(start), utc_from_timestamp(end)


class StripeBillingProvider:
    """
    Thin adapter over the Stripe API used by the billing core.

    Every outbound call goes through `_call`, which applies the configured HTTP
    timeout (set once in init_app) and translates Stripe exceptions into the
    BillingError taxonomy:
      - connection failures, timeouts and rate limits -> ServiceUnavailable (retryable)
      - resource_missing                                -> NotFound
      - any other Stripe error                          -> UpstreamFailure
    """

    def __init__(self, app=None):
        self.webhook_secret = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        # Server-side API key for every Stripe call.
        stripe.api_key = app.config.get('STRIPE_SECRET_KEY')
        # Bounded timeout on the HTTP client shared by all Stripe resource calls.
        stripe.default_http_client = stripe.RequestsClient(timeout=app.config.get('STRIPE_TIMEOUT_SECONDS', 30))
        stripe.max_network_retries = app.config.get('STRIPE_MAX_NETWORK_RETRIES', 0)
        self.webhook_secret = app.config.get('STRIPE_WEBHOOK_SECRET')
        app.extensions['billing_provider'] = self

    def _call(self, operation, resource, func, *args, **kwargs):
        """
        Runs a Stripe SDK call and maps its failures.

        Args:
            operation (str): Short label used in log lines (e.g. 'retrieve_subscription').
            resource (str): Name reported by NotFound if Stripe says the object is missing.
            func (callable): The Stripe SDK function.
        """
        try:
            return func(*args, **kwargs)
        except stripe.APIConnectionError as e:
            # Includes the HTTP client timeout.
            current_app.logger.error(f"Stripe {operation}: connection failure or timeout: {e}")
            raise ServiceUnavailable("The billing provider is temporarily unavailable. Please try again.", details=str(e))
        except stripe.RateLimitError as e:
            current_app.logger.error(f"Stripe {operation}: rate limited: {e}")
            raise ServiceUnavailable("The billing provider is busy. Please try again in a few moments.", details=str(e))
        except stripe.InvalidRequestError as e:
            if getattr(e, 'code', None) == 'resource_missing':
                current_app.logger.warning(f"Stripe {operation}: {resource} not found: {e}")
                raise NotFound(resource, details=str(e))
            current_app.logger.error(f"Stripe {operation}: invalid request: {e}")
            raise UpstreamFailure("The billing provider rejected the request.", details=str(e))
        except stripe.AuthenticationError as e:
            # Server-side configuration issue (missing or wrong API key).
            current_app.logger.critical(f"Stripe {operation}: authentication failed, check STRIPE_SECRET_KEY: {e}")
            raise UpstreamFailure("Billing is misconfigured. Please contact support.", details=str(e))
        except stripe.StripeError as e:
            current_app.logger.error(f"Stripe {operation}: {e}")
            raise UpstreamFailure("The billing provider returned an error.", details=str(e))

    # --- Subscriptions ---

    def retrieve_subscription(self, subscription_id):
        return self._call('retrieve_subscription', 'stripe_subscription',
                          stripe.Subscription.retrieve, subscription_id)

    def swap_subscription_price(self, subscription_id, item_id, price_id, prorate=True):
        """Replaces the price on an existing line item. With `prorate`, Stripe charges the difference immediately."""
        return self._call('swap_subscription_price', 'stripe_subscription',
                          stripe.Subscription.modify, subscription_id,
                          items=[{'id': item_id, 'price': price_id}],
                          proration_behavior='create_prorations' if prorate else 'none')

    def set_cancel_at_period_end(self, subscription_id, cancel=True):
        return self._call('set_cancel_at_period_end', 'stripe_subscription',
                          stripe.Subscription.modify, subscription_id,
                          cancel_at_period_end=cancel)

    # --- Subscription schedules ---

    def create_schedule_from_subscription(self, subscription_id):
        return self._call('create_schedule', 'stripe_subscription',
                          stripe.SubscriptionSchedule.create, from_subscription=subscription_id)

    def release_schedule(self, schedule_id):
        return self._call('release_schedule', 'stripe_schedule',
                          stripe.SubscriptionSchedule.release, schedule_id)

    def update_schedule_phases(self, schedule_id, phases):
        """
        Args:
            phases (list of dict): Each phase has 'items' (list of {'price', 'quantity'}),
                                   'start_date' (unix ts) and optionally 'end_date' (unix ts).
        """
        return self._call('update_schedule_phases', 'stripe_schedule',
                          stripe.SubscriptionSchedule.modify, schedule_id, phases=phases)

    # --- Customers, Checkout, Portal ---

    def create_customer(self, email, name=None, user_id=None):
        params = {'email': email, 'metadata': {'userId': str(user_id)} if user_id is not None else {}}
        if name:
            params['name'] = name
        return self._call('create_customer', 'stripe_customer', stripe.Customer.create, **params)

    def create_checkout_session(self, customer_id, price_id, user_id, success_url, cancel_url):
        """
        Creates a Checkout session in subscription mode.
        The user id travels in both session and subscription metadata so webhooks can find the user.
        """
        return self._call('create_checkout_session', 'stripe_price',
                          stripe.checkout.Session.create,
                          customer=customer_id,
                          line_items=[{'price': price_id, 'quantity': 1}],
                          mode='subscription',
                          success_url=success_url,
                          cancel_url=cancel_url,
                          allow_promotion_codes=True,
                          metadata={'userId': str(user_id)},
                          subscription_data={'metadata': {'userId': str(user_id)}})

    def create_portal_session(self, customer_id, return_url):
        return self._call('create_portal_session', 'stripe_customer',
                          stripe.billing_portal.Session.create,
                          customer=customer_id, return_url=return_url)

    # --- Webhooks ---

    def construct_webhook_event(self, payload, signature):
        """
        Verifies the Stripe-Signature header and parses the event.
        Raises ValueError (bad payload) or stripe.SignatureVerificationError (bad signature);
        the webhook route turns both into 400s.
        """
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
