# =============================================================================
# Ingestion API - Library Re-indexing and Status Tracking
# =============================================================================
#
# ENDPOINTS:
#   POST /ingest            - queue a library ingestion, return task_id
#   GET  /ingest/{task_id}  - poll status (PENDING -> STARTED -> SUCCESS/FAILURE)
#
# 202 Accepted for POST /ingest: the batch runs in a Celery worker and can
# take minutes. The library keeps serving its previous entries meanwhile.
#
# The worker cannot reach this process's membership cache, so the first
# poll that sees SUCCESS invalidates the tenant's snapshot here.
# =============================================================================

import logging
from collections import OrderedDict

from celery.result import AsyncResult
from fastapi import APIRouter, Depends

from mr_broker.api.deps import get_corpus_cache, require_token
from mr_broker.models.requests import IngestRequest
from mr_broker.models.responses import IngestResponse, IngestStatusResponse
from mr_broker.services.corpus_cache import CorpusMembershipCache
from mr_broker.workers.tasks import ingest_library

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ingestion"], dependencies=[Depends(require_token)])

# Task ids whose success has already been applied to the membership cache,
# oldest first; the oldest are forgotten past APPLIED_TASKS_MAX
APPLIED_TASKS_MAX = 1024
_applied_tasks: OrderedDict[str, None] = OrderedDict()


def _mark_applied(task_id: str) -> bool:
    """Record a finished task; False when it was already recorded."""
    if task_id in _applied_tasks:
        return False
    _applied_tasks[task_id] = None
    while len(_applied_tasks) > APPLIED_TASKS_MAX:
        _applied_tasks.popitem(last=False)
    return True


@router.post(
    "/ingest",
    response_model=IngestResponse,
    status_code=202,
    summary="Re-index a tenant library",
    description=(
        "Queue ingestion of every supported document under the tenant folder. "
        "Returns immediately with a task id for polling."
    ),
)
async def ingest_endpoint(request: IngestRequest) -> IngestResponse:
    task = ingest_library.delay(tenant_id=request.tenant_id)
    logger.info("Dispatched ingestion task: tenant=%s, task_id=%s", request.tenant_id, task.id)
    return IngestResponse(
        tenant_id=request.tenant_id,
        task_id=task.id,
        message=f"Ingestion of library '{request.tenant_id}' queued.",
    )


@router.get(
    "/ingest/{task_id}",
    response_model=IngestStatusResponse,
    summary="Check library ingestion status",
)
async def get_ingest_status(
    task_id: str,
    cache: CorpusMembershipCache = Depends(get_corpus_cache),
) -> IngestStatusResponse:
    """
    Celery task states:
    - PENDING: not yet picked up by a worker (or unknown id)
    - STARTED: worker has begun the batch
    - RETRY: batch-level failure, retrying with backoff
    - SUCCESS: finished; `result` holds the summary and per-document outcomes
    - FAILURE: gave up; see `error`
    """
    result = AsyncResult(task_id, app=ingest_library.app)
    status = result.status

    payload: dict | None = None
    error: str | None = None

    if status == "SUCCESS":
        payload = result.result or {}
        tenant_id = payload.get("tenantId")
        if tenant_id and _mark_applied(task_id):
            cache.invalidate(tenant_id)
    elif status == "FAILURE":
        error = str(result.result) if result.result else "Unknown error"

    return IngestStatusResponse(task_id=task_id, status=status, result=payload, error=error)
