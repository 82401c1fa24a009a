from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from forms import ChangePlanForm
from services.catalog import DEFAULT_PLANS, list_active_plans
from services.errors import BillingError, NotFound, UpstreamFailure
from services.plan_change import change_plan
from services.subscriptions import get_active_subscription, subscription_summary
from services.usage_guard import check_usage
from utils.helpers import form_error_response

# Blueprint for the subscription and catalog API.
subscription_bp = Blueprint('subscription', __name__, url_prefix='/api')

@subscription_bp.route('/plans', methods=['GET'])
def plans():
    """
    Lists the active plan catalog, cheapest first.
    Falls back to the built-in default catalog if the database cannot be read.
    """
    try:
        return jsonify([plan.to_dict() for plan in list_active_plans()])
    except SQLAlchemyError as e:
        current_app.logger.error(f"Error fetching plans, serving default catalog: {e}")
        return jsonify(DEFAULT_PLANS)

@subscription_bp.route('/subscription', methods=['GET'])
@login_required
def current_subscription():
    """Returns the caller's active subscription, plan and usage counters."""
    subscription = get_active_subscription(current_user.id)
    if subscription is None:
        current_app.logger.info(f"No subscription found for user {current_user.id}.")
        raise NotFound('subscription', message='No subscription found.')
    return jsonify(subscription_summary(subscription))

@subscription_bp.route('/subscription/usage', methods=['GET'])
@login_required
def usage():
    """Returns the caller's usage against their plan limits, without enforcing anything."""
    return jsonify(check_usage(current_user.id).to_dict())

@subscription_bp.route('/subscription/change-plan', methods=['POST'])
@login_required
def change_subscription_plan():
    """
    Moves the caller's paid subscription to another plan.

    Body: {"plan_id": "<catalog id>"}
    Success: {"success": true, "message", "effective_date" (ISO-8601), "type": "upgrade" | "downgrade" | "downgrade_to_free"}
    Failure: the BillingError shape with its status code.
    """
    form = ChangePlanForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    current_app.logger.info(f"[ChangePlan] User {current_user.id} requesting change to plan: {form.plan_id.data}")
    try:
        result = change_plan(current_user.id, form.plan_id.data)
    except BillingError:
        raise
    except Exception as e:
        # Anything unexpected still leaves as a structured error.
        current_app.logger.error(f"[ChangePlan] Unexpected error for user {current_user.id}: {e}", exc_info=True)
        raise UpstreamFailure('Failed to change plan.', details=str(e))

    return jsonify(result.to_dict())
