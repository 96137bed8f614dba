from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "HTTP requests that ended in a server error",
    ["method", "path", "status"],
)

WEBHOOK_EVENTS = Counter(
    "webhook_events_total",
    "Payment webhook deliveries by outcome",
    ["provider", "outcome"],
)
CHECKOUT_ATTEMPTS = Counter(
    "checkout_attempts_total",
    "Checkout attempts by provider and outcome",
    ["provider", "outcome"],
)
COUPON_VALIDATIONS = Counter(
    "coupon_validations_total",
    "Coupon validations by outcome",
    ["outcome"],
)
