# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Ingestion runs as a Celery job so the HTTP trigger returns immediately
# with a task id the caller can poll; failures land in the result backend
# instead of vanishing with a detached coroutine.
#
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌───────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ Redis │
# │(producer)│     │(broker)│    │ (consumer)   │     │(result)│
# └──────────┘     └───────┘     └──────────────┘     └───────┘
#    db 0 ──────────┘                                    └── db 1
# =============================================================================

from celery import Celery

from earnings_qa.config import settings

celery_app = Celery(
    "earnings_qa.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only; pickle would execute arbitrary code on load.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge after completion so a crashed worker's job is re-queued.
    # Re-running an ingestion is safe: record ids are deterministic.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Report STARTED so pollers can tell queued from running.
    task_track_started=True,

    # --- Timeouts ---
    # Eight years of quarters at the default spacing and batch delay fit
    # comfortably inside the soft limit.
    task_soft_time_limit=900,
    task_time_limit=1200,

    # --- Results ---
    result_expires=86400,

    include=["earnings_qa.workers.tasks"],
)
