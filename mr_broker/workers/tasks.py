# =============================================================================
# Celery Task Definitions - Library Ingestion
# =============================================================================
#
# `ingest_library` re-indexes one tenant's folder:
#   1. Walk the tenant folder (Drive)
#   2. Per supported document, on a bounded thread pool:
#        extract -> chunk -> embed -> upsert
#   3. Delete entries of documents no longer in the folder (orphan cleanup)
#   4. Return the summary + per-document outcomes as the task result
#
# IMPORTANT: Celery workers are SYNCHRONOUS.
# - Do NOT use `async/await` in Celery tasks
# - Use the sync paths of the vector index (upsert, delete, stats)
# The API's membership cache lives in another process; it is invalidated
# when GET /ingest/{task_id} first observes SUCCESS.
#
# RETRY STRATEGY:
# Per-document failures never fail the task; they are outcomes. Only a
# batch-level failure (folder listing, index stats) is retried:
# max_retries=3 with exponential backoff (60s, 120s, 240s).
# =============================================================================

import logging

from celery.exceptions import SoftTimeLimitExceeded

from mr_broker.errors import BrokerError, ConfigurationError
from mr_broker.services.document_store import get_document_store
from mr_broker.services.ingestion import ingest_library as run_ingestion
from mr_broker.services.vectorstore import get_vector_index
from mr_broker.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="ingest_library",
    max_retries=3,
    default_retry_delay=60,
)
def ingest_library(self, tenant_id: str) -> dict:
    """
    Ingest every supported document under a tenant's folder.

    Args:
        self: Celery task instance (bound task, provides self.request.id).
        tenant_id: Tenant (folder) id; also the vector namespace.

    Returns:
        IngestionSummary.to_dict(): batch counts and per-document outcomes.
    """
    task_id = self.request.id
    logger.info("[%s] Starting library ingestion for tenant %s", task_id, tenant_id)

    try:
        summary = run_ingestion(
            tenant_id,
            store=get_document_store(),
            index=get_vector_index(),
        )
    except ConfigurationError:
        # Not retried
        logger.exception("[%s] Ingestion misconfigured for tenant %s", task_id, tenant_id)
        raise
    except SoftTimeLimitExceeded:
        logger.error("[%s] Ingestion for tenant %s hit the soft time limit", task_id, tenant_id)
        raise
    except BrokerError as exc:
        logger.exception(
            "[%s] Ingestion failed for tenant %s: %s", task_id, tenant_id, exc.detail
        )
        countdown = 60 * (2 ** self.request.retries)
        raise self.retry(exc=exc, countdown=countdown)

    result = summary.to_dict()
    logger.info("[%s] Ingestion complete: %s", task_id, result["summary"])
    return result
