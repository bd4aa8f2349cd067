from prometheus_client import Counter, Histogram

JOB_DURATION = Histogram(
    "acumatica_job_duration_seconds",
    "Duration of background sync jobs",
    ["job", "status"],
)

JOB_RUNS = Counter(
    "acumatica_job_runs_total",
    "Background sync job runs",
    ["job", "status"],
)

SYNC_RECORDS = Counter(
    "acumatica_sync_records_total",
    "Records reconciled from Acumatica",
    ["entity", "action"],
)

ERP_REQUESTS = Counter(
    "acumatica_erp_requests_total",
    "HTTP requests issued to Acumatica",
    ["operation", "outcome"],
)


def observe_job(job: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(job=job, status=status).observe(duration)
    JOB_RUNS.labels(job=job, status=status).inc()


def record_sync_action(entity: str, action: str) -> None:
    SYNC_RECORDS.labels(entity=entity, action=action).inc()


def record_erp_request(operation: str, outcome: str) -> None:
    ERP_REQUESTS.labels(operation=operation, outcome=outcome).inc()
