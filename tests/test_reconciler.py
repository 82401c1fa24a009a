import json
import pytest
import stripe
from datetime import timedelta

from extensions import billing_provider, db as _db
from models.subscription import Subscription
from models.user import User
from services.errors import NotFound
from services.reconciler import reconcile_event
from services.subscriptions import create_free_subscription, get_active_subscription
from utils.helpers import utcnow

def _event(event_type, obj, event_id='evt_1'):
    return {'id': event_id, 'type': event_type, 'data': {'object': obj}}

# --- customer.subscription.created ---

def test_created_replaces_free_placeholder(plans, make_user, stripe_subscription, event_log):
    user = make_user()
    placeholder = create_free_subscription(user)

    outcome = reconcile_event(_event('customer.subscription.created',
                                     stripe_subscription(subscription_id='sub_new', price='pro_monthly', user_id=user.id)))

    assert outcome == 'created'
    active = get_active_subscription(user.id)
    assert active.stripe_subscription_id == 'sub_new'
    assert active.plan_id == 'pro_monthly'
    assert active.total_seconds_processed == 0
    assert active.stripe_customer_id == 'cus_123'
    assert _db.session.get(Subscription, placeholder.id).is_active is False
    assert Subscription.query.filter_by(user_id=user.id, is_active=True).count() == 1
    assert _db.session.get(User, user.id).stripe_customer_id == 'cus_123'

    entry = event_log.recent(1)[0]
    assert entry['event_id'] == 'evt_1'
    assert entry['processed'] is True
    assert entry['error'] is None
    assert entry['processing_time_ms'] >= 0

def test_created_resolves_user_by_customer(plans, make_user, stripe_subscription, event_log):
    user = make_user(stripe_customer_id='cus_known')

    reconcile_event(_event('customer.subscription.created',
                           stripe_subscription(subscription_id='sub_new', customer='cus_known')))

    assert get_active_subscription(user.id).stripe_subscription_id == 'sub_new'

def test_created_is_idempotent(plans, make_user, stripe_subscription, event_log):
    user = make_user()
    sub = stripe_subscription(subscription_id='sub_new', user_id=user.id)

    assert reconcile_event(_event('customer.subscription.created', sub)) == 'created'
    record = Subscription.query.filter_by(stripe_subscription_id='sub_new').first()
    record.total_seconds_processed = 5000
    _db.session.commit()

    assert reconcile_event(_event('customer.subscription.created', sub, event_id='evt_2')) == 'updated'
    assert Subscription.query.filter_by(stripe_subscription_id='sub_new').count() == 1
    # Same period, so the redelivery leaves usage alone.
    assert _db.session.get(Subscription, record.id).total_seconds_processed == 5000

def test_late_created_after_rollover_keeps_current_period(plans, make_user, make_subscription,
                                                         stripe_subscription, event_log):
    user = make_user()
    local = make_subscription(user, seconds_processed=900)
    current_start, current_end = local.current_period_start, local.current_period_end
    stale = stripe_subscription(local, period_start=current_start - timedelta(days=30),
                                period_end=current_start, user_id=user.id)

    assert reconcile_event(_event('customer.subscription.created', stale)) == 'updated'

    refreshed = _db.session.get(Subscription, local.id)
    assert refreshed.total_seconds_processed == 900
    assert refreshed.current_period_start == current_start
    assert refreshed.current_period_end == current_end

def test_created_for_new_period_resets_usage(plans, make_user, make_subscription, stripe_subscription, event_log):
    user = make_user()
    local = make_subscription(user, seconds_processed=900)
    new_start = local.current_period_end

    reconcile_event(_event('customer.subscription.created',
                           stripe_subscription(local, period_start=new_start,
                                               period_end=new_start + timedelta(days=30), user_id=user.id)))

    refreshed = _db.session.get(Subscription, local.id)
    assert refreshed.total_seconds_processed == 0
    assert refreshed.current_period_start == new_start

def test_created_for_unknown_user_fails_and_is_logged(plans, stripe_subscription, event_log):
    with pytest.raises(NotFound):
        reconcile_event(_event('customer.subscription.created',
                               stripe_subscription(subscription_id='sub_orphan', customer='cus_nobody')))

    entry = event_log.failed()[0]
    assert entry['event_type'] == 'customer.subscription.created'
    assert entry['processed'] is False
    assert 'sub_orphan' in entry['error']

def test_created_with_unknown_price_fails(plans, make_user, stripe_subscription, event_log):
    user = make_user()
    with pytest.raises(NotFound) as exc:
        reconcile_event(_event('customer.subscription.created',
                               stripe_subscription(price='price_unknown', user_id=user.id)))
    assert exc.value.resource == 'plan'
    assert Subscription.query.count() == 0

# --- customer.subscription.updated ---

def test_updated_applies_scheduled_downgrade(plans, make_user, make_subscription, stripe_subscription, event_log):
    user = make_user()
    local = make_subscription(user, plan_id='pro_monthly', seconds_processed=5000)
    new_start = local.current_period_end
    new_end = new_start + timedelta(days=30)

    outcome = reconcile_event(_event('customer.subscription.updated',
                                     stripe_subscription(local, price='basic_monthly',
                                                         period_start=new_start, period_end=new_end)))

    assert outcome == 'updated'
    refreshed = _db.session.get(Subscription, local.id)
    assert refreshed.plan_id == 'basic_monthly'
    assert refreshed.current_period_start == new_start
    assert refreshed.current_period_end == new_end
    # New period, fresh counter.
    assert refreshed.total_seconds_processed == 0

def test_updated_same_period_keeps_usage(plans, make_user, make_subscription, stripe_subscription, event_log):
    user = make_user()
    local = make_subscription(user, plan_id='basic_monthly', seconds_processed=1200)

    reconcile_event(_event('customer.subscription.updated', stripe_subscription(local, price='pro_monthly')))

    refreshed = _db.session.get(Subscription, local.id)
    assert refreshed.plan_id == 'pro_monthly'
    assert refreshed.total_seconds_processed == 1200

def test_updated_cancel_at_period_end_changes_nothing(plans, make_user, make_subscription, stripe_subscription, event_log):
    user = make_user()
    local = make_subscription(user, plan_id='pro_monthly', seconds_processed=42)

    outcome = reconcile_event(_event('customer.subscription.updated',
                                     stripe_subscription(local, price='basic_monthly', cancel_at_period_end=True)))

    assert outcome == 'cancel_scheduled'
    refreshed = _db.session.get(Subscription, local.id)
    assert refreshed.plan_id == 'pro_monthly'
    assert refreshed.is_active is True
    assert refreshed.total_seconds_processed == 42

def test_updated_past_due_deactivates(plans, make_user, make_subscription, stripe_subscription, event_log):
    user = make_user()
    local = make_subscription(user)

    reconcile_event(_event('customer.subscription.updated', stripe_subscription(local, status='past_due')))

    assert _db.session.get(Subscription, local.id).is_active is False
    assert get_active_subscription(user.id) is None

def test_updated_without_local_record_creates_it(plans, make_user, stripe_subscription, event_log):
    user = make_user()
    outcome = reconcile_event(_event('customer.subscription.updated',
                                     stripe_subscription(subscription_id='sub_late', user_id=user.id)))
    assert outcome == 'created'
    assert get_active_subscription(user.id).stripe_subscription_id == 'sub_late'

# --- customer.subscription.deleted ---

def test_deleted_moves_user_to_free_tier(plans, make_user, make_subscription, stripe_subscription, event_log):
    user = make_user()
    local = make_subscription(user, plan_id='pro_monthly')

    outcome = reconcile_event(_event('customer.subscription.deleted', stripe_subscription(local, status='canceled')))

    assert outcome == 'deactivated'
    assert _db.session.get(Subscription, local.id).is_active is False
    active = get_active_subscription(user.id)
    assert active.is_free_placeholder
    assert active.plan_id == 'free'
    assert active.total_seconds_processed == 0

def test_deleted_inactive_row_does_not_add_placeholder(plans, make_user, make_subscription, stripe_subscription, event_log):
    user = make_user()
    make_subscription(user, stripe_subscription_id='sub_current')
    old = make_subscription(user, stripe_subscription_id='sub_old', is_active=False)

    reconcile_event(_event('customer.subscription.deleted', stripe_subscription(old, status='canceled')))

    assert get_active_subscription(user.id).stripe_subscription_id == 'sub_current'

def test_deleted_unknown_subscription_is_ignored(plans, stripe_subscription, event_log):
    outcome = reconcile_event(_event('customer.subscription.deleted', stripe_subscription(subscription_id='sub_ghost')))
    assert outcome == 'ignored'

# --- checkout.session.completed and others ---

def test_checkout_completed_links_customer(plans, make_user, event_log):
    user = make_user()
    session = {'id': 'cs_1', 'customer': 'cus_linked', 'metadata': {'userId': str(user.id)}, 'subscription': 'sub_1'}

    assert reconcile_event(_event('checkout.session.completed', session)) == 'customer_linked'
    assert _db.session.get(User, user.id).stripe_customer_id == 'cus_linked'
    assert reconcile_event(_event('checkout.session.completed', session, event_id='evt_2')) == 'acknowledged'

def test_unhandled_event_type_is_ignored_but_logged(db, event_log):
    assert reconcile_event(_event('invoice.paid', {'id': 'in_1'})) == 'ignored'
    assert event_log.by_type('invoice.paid')[0]['processed'] is True

# --- /billing/stripe-webhook ---

def _post_webhook(client, body=b'{}', signature='t=1,v1=abc'):
    headers = {'Stripe-Signature': signature} if signature else {}
    return client.post('/billing/stripe-webhook', data=body, headers=headers, content_type='application/json')

def test_webhook_requires_signature_header(client, db, event_log):
    response = _post_webhook(client, signature=None)
    assert response.status_code == 400
    assert len(event_log) == 0

def test_webhook_rejects_bad_signature(client, db, mocker, event_log):
    mocker.patch('stripe.Webhook.construct_event',
                 side_effect=stripe.SignatureVerificationError('No signatures found', 't=1,v1=abc'))
    response = _post_webhook(client)
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Invalid signature'}

def test_webhook_rejects_bad_payload(client, db, mocker, event_log):
    mocker.patch('stripe.Webhook.construct_event', side_effect=ValueError('Invalid JSON'))
    response = _post_webhook(client, body=b'not json')
    assert response.status_code == 400

def test_webhook_without_configured_secret(client, db, mocker, event_log):
    mocker.patch.object(billing_provider, 'webhook_secret', None)
    response = _post_webhook(client)
    assert response.status_code == 500

def test_webhook_dispatches_verified_event(client, plans, make_user, stripe_subscription, mocker, event_log):
    user = make_user()
    create_free_subscription(user)
    event = _event('customer.subscription.created',
                   stripe_subscription(subscription_id='sub_hook', price='basic_monthly', user_id=user.id))
    body = json.dumps(event).encode()
    construct = mocker.patch('stripe.Webhook.construct_event', return_value=event)

    response = _post_webhook(client, body=body)

    assert response.status_code == 200
    assert response.get_json() == {'received': True, 'outcome': 'created'}
    construct.assert_called_once_with(body, 't=1,v1=abc', 'whsec_test')
    assert get_active_subscription(user.id).stripe_subscription_id == 'sub_hook'

def test_webhook_handler_failure_is_not_acknowledged(client, plans, stripe_subscription, mocker, event_log):
    event = _event('customer.subscription.created', stripe_subscription(customer='cus_nobody'))
    mocker.patch('stripe.Webhook.construct_event', return_value=event)

    response = _post_webhook(client)

    assert response.status_code == 404
    assert response.get_json()['code'] == 'NOT_FOUND'
    assert event_log.failed()[0]['event_id'] == 'evt_1'

def test_webhook_unexpected_failure_returns_500(client, db, mocker, event_log):
    mocker.patch('stripe.Webhook.construct_event', return_value=_event('customer.subscription.deleted', {'id': 'sub_1'}))
    mocker.patch('services.reconciler.Subscription.query', new_callable=mocker.PropertyMock, side_effect=RuntimeError('db down'))

    response = _post_webhook(client)

    assert response.status_code == 500
    assert event_log.failed()[0]['error'] == 'db down'

def test_webhook_logs_endpoint(client, db, event_log):
    event_log.record({'event_id': 'evt_a', 'event_type': 'invoice.paid'})
    event_log.record({'event_id': 'evt_b', 'event_type': 'customer.subscription.updated',
                      'processed': False, 'error': 'boom', 'timestamp': utcnow()})

    response = client.get('/billing/webhook-logs')
    assert response.status_code == 200
    data = response.get_json()
    assert data['count'] == 2
    assert [e['event_id'] for e in data['entries']] == ['evt_b', 'evt_a']
    assert data['entries'][0]['timestamp'].endswith('+00:00')

    failed = client.get('/billing/webhook-logs?failed=true').get_json()
    assert [e['event_id'] for e in failed['entries']] == ['evt_b']

    by_type = client.get('/billing/webhook-logs?type=invoice.paid').get_json()
    assert [e['event_id'] for e in by_type['entries']] == ['evt_a']

def test_webhook_logs_endpoint_disabled(client, db, app, mocker):
    mocker.patch.dict(app.config, {'WEBHOOK_LOG_ENDPOINT_ENABLED': False})
    assert client.get('/billing/webhook-logs').status_code == 404
