"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    """Create a counter, reusing the registered collector if the module is re-imported"""
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Webhook metrics
webhook_events_counter = _counter(
    'eventhub_webhook_events_total',
    'Total number of Stripe webhook deliveries',
    ['endpoint', 'event_type', 'outcome']
)

# Ledger metrics
transactions_recorded_counter = _counter(
    'eventhub_transactions_recorded_total',
    'Total number of Transaction rows created from webhooks',
    ['type']
)

subscriptions_recorded_counter = _counter(
    'eventhub_subscriptions_recorded_total',
    'Total number of subscription rows created from webhooks',
    ['kind']
)

attendees_linked_counter = _counter(
    'eventhub_attendees_linked_total',
    'Total number of attendee rows linked to a transaction',
    ['source']
)

# Gateway metrics
gateway_failures_counter = _counter(
    'eventhub_gateway_failures_total',
    'Total number of Stripe calls that failed and were tolerated',
    ['operation']
)

# Background task metrics
sweeper_runs_counter = _counter(
    'eventhub_attendee_sweeper_runs_total',
    'Total number of attendee link sweeper runs',
    ['status']
)
