from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)

RESERVATION_OUTCOMES = Counter(
    "booking_reservations_total",
    "Reservation attempts by outcome",
    ["outcome"],
)

TRANSITION_OUTCOMES = Counter(
    "booking_transitions_total",
    "Booking status and payment transitions by outcome",
    ["field", "target", "outcome"],
)

SLOT_LISTING_SIZE = Histogram(
    "booking_slots_listed",
    "Number of slots returned per listing",
    buckets=(0, 1, 2, 5, 10, 20, 40, 80),
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
