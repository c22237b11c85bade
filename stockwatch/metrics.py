"""Prometheus metrics for the stock monitor."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("stockwatch", "Stock monitor application info")
app_info.info({"version": "0.1.0", "name": "stockwatch"})

# Check metrics
stock_checks_total = Counter(
    "stock_checks_total",
    "Total number of stock checks by outcome",
    ["target", "outcome"],
)

stock_check_duration_seconds = Histogram(
    "stock_check_duration_seconds",
    "Time spent on a single stock check",
    ["target"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

# Rate control
link_backoff_seconds = Gauge(
    "link_backoff_seconds",
    "Current backoff delay per target (last updated link)",
    ["target"],
)

link_consecutive_failures = Gauge(
    "link_consecutive_failures",
    "Consecutive non-success outcomes (last updated link)",
    ["target"],
)

links_disabled_total = Counter(
    "links_disabled_total",
    "Links disabled by the CAPTCHA policy",
    ["target"],
)

# Link metrics
links_monitored = Gauge(
    "links_monitored",
    "Number of links currently being monitored",
    ["target"],
)

# State transitions
stock_transitions_total = Counter(
    "stock_transitions_total",
    "Stock state decisions that produced or suppressed an event",
    ["target", "decision"],
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Notification delivery attempts per channel",
    ["channel", "status"],
)

notification_latency_seconds = Histogram(
    "notification_latency_seconds",
    "Notification channel delivery latency",
    ["channel"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 15.0],
)

operator_alerts_total = Counter(
    "operator_alerts_total",
    "Operator alerts raised",
    ["target", "kind"],
)

# Proxy metrics
proxy_cooldowns_total = Counter(
    "proxy_cooldowns_total",
    "Proxies put into cooldown after repeated blocks",
    ["target"],
)


def update_links_monitored(target_counts: dict[str, int]):
    """Update the links_monitored gauge with current counts."""
    links_monitored.clear()
    for target, count in target_counts.items():
        links_monitored.labels(target=target).set(count)


def record_check(target: str, outcome: str, duration: float):
    """Record a finished stock check."""
    stock_checks_total.labels(target=target, outcome=outcome).inc()
    stock_check_duration_seconds.labels(target=target).observe(duration)


def record_rate_state(target: str, backoff: float, consecutive_failures: int):
    link_backoff_seconds.labels(target=target).set(backoff)
    link_consecutive_failures.labels(target=target).set(consecutive_failures)


def record_link_disabled(target: str):
    links_disabled_total.labels(target=target).inc()


def record_transition(target: str, decision: str):
    """Record a state tracker decision."""
    stock_transitions_total.labels(target=target, decision=decision).inc()


def record_notification(channel: str, success: bool, duration: float):
    """Record a notification delivery attempt."""
    status = "success" if success else "error"
    notifications_total.labels(channel=channel, status=status).inc()
    notification_latency_seconds.labels(channel=channel).observe(duration)


def record_notification_suppressed(channel: str):
    notifications_total.labels(channel=channel, status="suppressed").inc()


def record_operator_alert(target: str, kind: str):
    operator_alerts_total.labels(target=target, kind=kind).inc()


def record_proxy_cooldown(target: str):
    proxy_cooldowns_total.labels(target=target).inc()
