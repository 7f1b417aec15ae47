from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

DEPLOYMENTS_TRIGGERED = Counter(
    "ark_deployments_triggered_total",
    "Deploy jobs triggered",
    ["environment"],
)
INSTANCE_TRANSITIONS = Counter(
    "ark_instance_transitions_total",
    "Instance status transitions",
    ["from_status", "to_status"],
)
JENKINS_REQUESTS = Counter(
    "ark_jenkins_requests_total",
    "Jenkins API requests by outcome",
    ["outcome"],
)
MESH_DEGRADED = Gauge(
    "ark_mesh_directory_degraded",
    "1 while the device list is served from stale cache or empty",
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def record_transition(from_status: str, to_status: str) -> None:
    INSTANCE_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()
