"""Prometheus counters for billing, webhooks, affiliate and analytics activity"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labels):
    # Test runs import the app more than once; reuse the registered collector
    try:
        return Counter(name, documentation, labels)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


webhook_events_counter = _counter(
    'toolsblog_webhook_events_total',
    'Provider webhook deliveries by outcome (processed, duplicate, discarded, ignored, failed)',
    ['provider', 'outcome'],
)

subscription_operations_counter = _counter(
    'toolsblog_subscription_operations_total',
    'Subscription create / change_plan / cancel calls by result',
    ['operation', 'status'],
)

affiliate_events_counter = _counter(
    'toolsblog_affiliate_events_total',
    'Affiliate clicks, deduplicated clicks and conversions',
    ['event'],
)

analytics_rollups_counter = _counter(
    'toolsblog_analytics_rollups_total',
    'Daily analytics rollup runs by result',
    ['status'],
)
