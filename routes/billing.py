from flask import Blueprint, request, jsonify, current_app, abort
from flask_login import login_required, current_user
import stripe # Only for the webhook signature error type; every API call goes through billing_provider.

from extensions import billing_provider, webhook_log
from forms import CheckoutForm
from services.checkout import start_checkout, start_portal
from services.errors import BillingError
from services.reconciler import reconcile_event
from utils.helpers import form_error_response, is_safe_url, is_same_origin, isoformat_utc

# Blueprint for billing-related routes.
# Checkout, the customer portal and the Stripe webhook live under '/billing'.
billing_bp = Blueprint('billing', __name__, url_prefix='/billing')

def _redirect_target(candidate, default):
    """
    Returns `candidate` if it points back at this site (request host or SITE_URL), else `default`.
    Keeps Stripe from redirecting users to arbitrary hosts.
    """
    if not candidate:
        return default
    site_url = current_app.config.get('SITE_URL', '')
    if is_safe_url(candidate) or is_same_origin(candidate, site_url):
        return candidate
    current_app.logger.warning(f"Rejected redirect target {candidate!r}; using default.")
    return default

# Route to create a Stripe Checkout session for a paid plan.
@billing_bp.route('/checkout', methods=['POST'])
@login_required # Ensures only logged-in users can create a checkout session.
def create_checkout_session():
    """
    Creates a Stripe Checkout session for the requested plan.

    Body: {"plan_id", "success_url"?, "cancel_url"?}
    Returns: {"success": true, "session_id", "url"}. The client redirects to `url`.
    Refused with 400 EXISTING_SUBSCRIPTION when the user already pays; plan changes go through
    /api/subscription/change-plan.
    """
    form = CheckoutForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    site_url = current_app.config['SITE_URL'].rstrip('/')
    # {CHECKOUT_SESSION_ID} is substituted by Stripe.
    success_url = _redirect_target(form.success_url.data, f"{site_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}")
    cancel_url = _redirect_target(form.cancel_url.data, f"{site_url}/pricing")

    session = start_checkout(current_user, form.plan_id.data, success_url, cancel_url)
    return jsonify({'success': True, **session})

# Route to create a Stripe Billing Portal session.
# This allows users to manage their existing subscriptions (e.g., update card, cancel).
@billing_bp.route('/portal', methods=['POST'])
@login_required
def create_customer_portal_session():
    """Creates a Stripe Billing Portal session for the current user and returns its URL."""
    data = request.get_json(silent=True) or {}
    site_url = current_app.config['SITE_URL'].rstrip('/')
    return_url = _redirect_target(data.get('return_url'), f"{site_url}/dashboard")

    portal = start_portal(current_user, return_url)
    return jsonify({'success': True, **portal})

# Stripe Webhook endpoint to receive and process events from Stripe.
# This endpoint must be publicly accessible (no @login_required).
@billing_bp.route('/stripe-webhook', methods=['POST'])
def stripe_webhook():
    """
    Verifies the Stripe signature and hands the event to the reconciler.
    Security is handled by verifying the Stripe signature.

    Non-2xx answers make Stripe redeliver, so a failed handler returns 5xx and a
    bad signature returns 400.
    """
    # The signature covers the raw body bytes.
    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')

    if not sig_header:
        current_app.logger.error("Webhook rejected: missing Stripe-Signature header.")
        return jsonify({'error': 'Missing signature'}), 400

    if not billing_provider.webhook_secret:
        current_app.logger.critical("Webhook rejected: STRIPE_WEBHOOK_SECRET is not configured.")
        return jsonify({'error': 'Webhook secret not configured'}), 500

    # --- Webhook Signature Verification ---
    try:
        event = billing_provider.construct_webhook_event(payload, sig_header)
    except ValueError as e:
        # Invalid payload (e.g., not valid JSON).
        current_app.logger.error(f"Webhook ValueError: Invalid payload - {e}")
        return jsonify({'error': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError as e:
        # The request may be spoofed or the webhook secret might be misconfigured.
        current_app.logger.error(f"Webhook SignatureVerificationError: {e}")
        return jsonify({'error': 'Invalid signature'}), 400

    current_app.logger.info(f"Stripe Webhook Event ID {event.get('id')}: Received event type '{event.get('type')}'.")

    # --- Event Handling ---
    # reconcile_event logs the failure and records it in the webhook log before re-raising.
    try:
        outcome = reconcile_event(event)
    except BillingError as e:
        return jsonify({'error': e.message, 'code': e.code}), e.status_code
    except Exception:
        return jsonify({'error': 'Webhook handler failed'}), 500

    return jsonify({'received': True, 'outcome': outcome})

@billing_bp.route('/webhook-logs', methods=['GET'])
def webhook_logs():
    """
    Recent webhook deliveries, newest first. Operator debugging aid.
    Disabled (404) unless WEBHOOK_LOG_ENDPOINT_ENABLED is set.

    Query params:
        limit (int): Number of entries, default 50.
        type (str): Only entries of this event type.
        failed (bool): Only entries whose processing failed.
    """
    if not current_app.config.get('WEBHOOK_LOG_ENDPOINT_ENABLED'):
        abort(404)

    limit = request.args.get('limit', default=50, type=int)
    event_type = request.args.get('type')
    if request.args.get('failed', '').lower() in ('1', 'true', 'yes'):
        entries = webhook_log.failed()[:limit]
    elif event_type:
        entries = webhook_log.by_type(event_type)[:limit]
    else:
        entries = webhook_log.recent(limit)

    return jsonify({
        'count': len(entries),
        'entries': [{**entry, 'timestamp': isoformat_utc(entry['timestamp'])} for entry in entries],
    })
