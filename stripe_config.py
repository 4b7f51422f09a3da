import os

STRIPE_KEYS = {
    'secret_key': os.environ.get('STRIPE_SECRET_KEY', ''),
    'publishable_key': os.environ.get('STRIPE_PUBLISHABLE_KEY', ''),
    'webhook_secret': os.environ.get('STRIPE_WEBHOOK_SECRET', ''),
    # Keyed by "<plan>_<period>"
    'price_ids': {
        'pro_monthly': os.environ.get('STRIPE_PRICE_PRO_MONTHLY', ''),
        'pro_yearly': os.environ.get('STRIPE_PRICE_PRO_YEARLY', ''),
    },
}
