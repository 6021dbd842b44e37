# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs library ingestion in the background:
#   POST /ingest -> Redis -> worker: walk folder -> extract -> chunk -> embed -> upsert
#
# A whole library can take minutes (PDF layout analysis, embedding calls),
# far beyond an HTTP request. The API returns a task id at once and the
# client polls GET /ingest/{task_id}.
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌───────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ Redis │
# │(producer)│     │(broker)│    │ (consumer)   │     │(result)│
# └──────────┘     └───────┘     └──────────────┘     └───────┘
#    db 0 ──────────┘                                    └── db 1
# =============================================================================

from celery import Celery

from mr_broker.config import settings

celery_app = Celery(
    "mr_broker.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only: task args are plain ids, results are summary dicts.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge after completion so a crashed worker's batch is re-queued.
    # Re-running a batch is safe: upserts overwrite the same entry ids.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # One long batch per worker at a time.
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # Soft limit stops launching new documents; hard limit kills the batch.
    task_soft_time_limit=1800,
    task_time_limit=2100,

    # --- Results ---
    # Per-document outcomes stay pollable for a day.
    result_expires=86400,
    task_track_started=True,

    include=["mr_broker.workers.tasks"],
)
