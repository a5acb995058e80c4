# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: Report ingestion job
#
# Ingestion paces its requests and its index batches, so a multi-year range
# takes minutes. The API returns a task_id immediately and clients poll.
# =============================================================================
