from flask import Blueprint, jsonify, request, current_app, g
from models import User, db
from decorators import login_required
from stripe_config import STRIPE_KEYS
import stripe
import json
from datetime import datetime

# Initialize Stripe
stripe.api_key = STRIPE_KEYS['secret_key']

payment = Blueprint('payment', __name__)


def _price_id_for(plan_name, billing_period):
    key = f"{(plan_name or 'pro').lower()}_{(billing_period or 'monthly').lower()}"
    return STRIPE_KEYS['price_ids'].get(key)


def _period_end(subscription):
    """current_period_end moved onto subscription items in newer API versions."""
    ts = None
    try:
        ts = subscription['current_period_end']
    except (KeyError, TypeError):
        pass
    if not ts:
        try:
            ts = subscription['items']['data'][0]['current_period_end']
        except (KeyError, IndexError, TypeError):
            ts = None
    return datetime.utcfromtimestamp(int(ts)) if ts else None


@payment.route('/api/create-checkout-session', methods=['POST'])
@login_required
def create_checkout_session():
    user = g.user
    payload = request.get_json(silent=True) or {}
    plan_name = payload.get('planName') or 'Pro'
    billing_period = payload.get('billingPeriod') or 'monthly'
    price_id = payload.get('priceId') or _price_id_for(plan_name, billing_period)
    if not price_id:
        return jsonify({'error': 'Invalid price ID'}), 400

    try:
        customer_id = user.stripe_customer_id
        if not customer_id:
            customer = stripe.Customer.create(email=user.email, name=user.name, metadata={'userId': str(user.id)})
            customer_id = customer.id
            user.stripe_customer_id = customer_id
            db.session.commit()

        base_url = current_app.config['APP_BASE_URL'].rstrip('/')
        checkout_session = stripe.checkout.Session.create(
            mode='subscription',
            customer=customer_id,
            line_items=[{'price': price_id, 'quantity': 1}],
            success_url=base_url + '/payment/success?session_id={CHECKOUT_SESSION_ID}',
            cancel_url=base_url + '/payment/cancel',
            metadata={'userId': str(user.id), 'planName': plan_name, 'billingPeriod': billing_period},
            allow_promotion_codes=True,
            billing_address_collection='auto',
        )
        return jsonify({'url': checkout_session.url})
    except stripe.StripeError as e:
        current_app.logger.warning("Checkout session failed for user %s: %s", user.id, e)
        return jsonify({'error': str(e) or 'Failed to create checkout session'}), 500


@payment.route('/api/create-portal-session', methods=['POST'])
@login_required
def create_portal_session():
    user = g.user
    if not user.stripe_customer_id:
        return jsonify({'error': 'No billing account found for this user'}), 400
    try:
        portal_session = stripe.billing_portal.Session.create(
            customer=user.stripe_customer_id,
            return_url=current_app.config['APP_BASE_URL'].rstrip('/') + '/dashboard/billing',
        )
        return jsonify({'url': portal_session.url})
    except stripe.StripeError as e:
        current_app.logger.warning("Portal session failed for user %s: %s", user.id, e)
        return jsonify({'error': str(e) or 'Failed to create portal session'}), 500


@payment.route('/api/check-subscription', methods=['GET'])
@login_required
def check_subscription():
    user = g.user
    is_pro = user.plan == 'pro'
    active = user.has_active_subscription
    return jsonify({
        'success': True,
        'hasActiveSubscription': active,
        'isPro': is_pro,
        'canUpgrade': not is_pro or not active,
        'redirectTo': '/dashboard/billing' if (active and is_pro) else '/dashboard/payment',
        'subscriptionDetails': {
            'plan': user.plan or 'free_trial',
            'status': user.subscription_status or 'none',
            'stripeCustomerId': user.stripe_customer_id,
            'subscriptionId': user.subscription_id,
            'billingPeriod': user.billing_period,
            'currentPeriodEnd': user.current_period_end.isoformat() if user.current_period_end else None,
        },
    })


# --- Webhook event handlers ---

def _user_for_customer(customer_id):
    if not customer_id:
        return None
    return User.query.filter_by(stripe_customer_id=customer_id).first()


def handle_checkout_completed(obj):
    customer_id = obj.get('customer')
    subscription_id = obj.get('subscription')
    metadata = obj.get('metadata') or {}
    plan_name = metadata.get('planName') or 'Pro'
    billing_period = metadata.get('billingPeriod') or 'monthly'
    if not customer_id or not subscription_id:
        current_app.logger.error("checkout.session.completed without customer/subscription")
        return
    user = _user_for_customer(customer_id)
    if not user:
        current_app.logger.error("No user for Stripe customer %s", customer_id)
        return

    subscription = stripe.Subscription.retrieve(subscription_id)
    plan = 'pro' if 'pro' in plan_name.lower() else 'free_trial'
    user.subscription_id = subscription_id
    user.plan = plan
    user.subscription_status = subscription['status']
    user.billing_period = billing_period
    period_end = _period_end(subscription)
    if period_end:
        user.current_period_end = period_end
    if plan == 'pro':
        user.chat_count = 0
    db.session.commit()
    current_app.logger.info("User %s upgraded to %s (%s)", user.id, plan, billing_period)


def handle_subscription_updated(obj):
    user = _user_for_customer(obj.get('customer'))
    if not user:
        current_app.logger.error("No user for Stripe customer %s", obj.get('customer'))
        return
    user.subscription_status = obj.get('status')
    period_end = _period_end(obj)
    if period_end:
        user.current_period_end = period_end
    db.session.commit()


def handle_subscription_deleted(obj):
    user = _user_for_customer(obj.get('customer'))
    if not user:
        current_app.logger.error("No user for Stripe customer %s", obj.get('customer'))
        return
    user.plan = 'free_trial'
    user.subscription_status = 'canceled'
    user.subscription_id = None
    user.billing_period = None
    user.current_period_end = None
    user.chat_count = 0
    db.session.commit()


def handle_payment_succeeded(obj):
    current_app.logger.info("Invoice paid for customer %s (%s)", obj.get('customer'), obj.get('id'))


def handle_payment_failed(obj):
    user = _user_for_customer(obj.get('customer'))
    if not user:
        current_app.logger.error("No user for Stripe customer %s", obj.get('customer'))
        return
    user.subscription_status = 'past_due'
    db.session.commit()


WEBHOOK_HANDLERS = {
    'checkout.session.completed': handle_checkout_completed,
    'customer.subscription.updated': handle_subscription_updated,
    'customer.subscription.deleted': handle_subscription_deleted,
    'invoice.payment_succeeded': handle_payment_succeeded,
    'invoice.payment_failed': handle_payment_failed,
}


@payment.route('/api/webhooks/stripe', methods=['POST'])
def stripe_webhook():
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get('Stripe-Signature')
    try:
        stripe.Webhook.construct_event(payload, sig_header, STRIPE_KEYS['webhook_secret'])
    except (ValueError, stripe.SignatureVerificationError) as e:
        current_app.logger.warning("Webhook signature verification failed: %s", e)
        return jsonify({'error': 'Webhook signature verification failed'}), 400

    # Signature is verified; work on the plain JSON body
    event = json.loads(payload)
    handler = WEBHOOK_HANDLERS.get(event.get('type'))
    if handler is None:
        current_app.logger.info("Unhandled Stripe event %s", event.get('type'))
        return jsonify({'received': True})
    try:
        handler((event.get('data') or {}).get('object') or {})
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Webhook handler failed for %s", event.get('type'))
        return jsonify({'error': 'Webhook handler failed'}), 500
    return jsonify({'received': True})


@payment.route('/payment/success')
def payment_success():
    return jsonify({'success': True, 'sessionId': request.args.get('session_id'),
                    'message': 'Subscription activated. It may take a moment to appear.'})


@payment.route('/payment/cancel')
def payment_cancel():
    return jsonify({'success': False, 'message': 'Payment cancelled'})
