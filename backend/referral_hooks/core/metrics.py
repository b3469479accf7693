"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-importing the module (e.g. under test reloads) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


webhook_events_counter = _counter(
    'referral_hooks_webhook_events_total',
    'Total number of payment webhook events received',
    ['flow', 'status']
)

promo_requests_counter = _counter(
    'referral_hooks_promo_requests_total',
    'Total number of promo code requests by outcome',
    ['outcome']
)

promo_codes_created_counter = _counter(
    'referral_hooks_promo_codes_created_total',
    'Total number of promotion codes created in Stripe',
    ['policy']
)

upstream_errors_counter = _counter(
    'referral_hooks_upstream_errors_total',
    'Total number of failed calls to external services',
    ['service']
)
