from prometheus_client import Counter, Histogram, Gauge

# Business Metrics
ecomm_checkout_total = Counter(
    "ecomm_checkout_total", 
    "Total cart-to-order conversions", 
    ["status"] # Labels: 'success', 'empty_cart', 'failed'
)

ecomm_checkout_duration_seconds = Histogram(
    "ecomm_checkout_duration_seconds", 
    "Cart-to-order conversion duration in seconds"
)

ecomm_payment_sessions_total = Counter(
    "ecomm_payment_sessions_total",
    "Gateway checkout sessions requested",
    ["status"] # Labels: 'created', 'gateway_error', 'rejected'
)

ecomm_webhook_events_total = Counter(
    "ecomm_webhook_events_total",
    "Gateway webhook events by outcome",
    ["event_type", "outcome"] # outcome: 'applied', 'skipped', 'no_order', 'ignored', 'storage_error'
)

ecomm_active_carts = Gauge(
    "ecomm_active_carts", 
    "Number of carts currently holding items"
)
