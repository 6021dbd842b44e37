# =============================================================================
# Libraries API - Tenant Folders, Index Stats and Maintenance
# =============================================================================
#
# ENDPOINTS:
#   GET    /libraries                    - tenant folders under the Drive root
#   POST   /libraries/refresh            - drop the listing and membership caches
#   GET    /libraries/{tenant_id}/stats  - documents in Drive vs entries indexed
#   DELETE /libraries/{tenant_id}/index  - purge a tenant's namespace
#
# A tenant IS a folder: its id is the folder id and the vector namespace.
# =============================================================================

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends

from mr_broker.api.deps import get_corpus_cache, get_index, get_library_cache, require_token
from mr_broker.models.responses import (
    DeleteIndexResponse,
    LibrariesResponse,
    Library,
    LibraryStatsResponse,
    RefreshResponse,
)
from mr_broker.services.corpus_cache import CorpusMembershipCache, LibraryListCache
from mr_broker.services.vectorstore import VectorIndex

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Libraries"], dependencies=[Depends(require_token)])


@router.get("/libraries", response_model=LibrariesResponse, summary="List tenant libraries")
async def list_libraries(
    libraries: LibraryListCache = Depends(get_library_cache),
) -> LibrariesResponse:
    folders = await libraries.get()
    return LibrariesResponse(libraries=[Library(id=f.id, name=f.name) for f in folders])


@router.post(
    "/libraries/refresh",
    response_model=RefreshResponse,
    summary="Forget cached folder listings",
)
async def refresh_libraries(
    libraries: LibraryListCache = Depends(get_library_cache),
    cache: CorpusMembershipCache = Depends(get_corpus_cache),
) -> RefreshResponse:
    libraries.invalidate()
    cache.invalidate()
    logger.info("Library and membership caches invalidated")
    return RefreshResponse()


@router.get(
    "/libraries/{tenant_id}/stats",
    response_model=LibraryStatsResponse,
    summary="Compare a tenant folder with its index namespace",
)
async def library_stats(
    tenant_id: str,
    cache: CorpusMembershipCache = Depends(get_corpus_cache),
    index: VectorIndex = Depends(get_index),
) -> LibraryStatsResponse:
    snapshot = await cache.refresh(tenant_id)
    stats = await asyncio.to_thread(index.describe_stats)
    return LibraryStatsResponse(
        tenant_id=tenant_id,
        drive_count=len(snapshot),
        indexed_count=stats.get(tenant_id, 0),
    )


@router.delete(
    "/libraries/{tenant_id}/index",
    response_model=DeleteIndexResponse,
    summary="Delete every index entry of a tenant",
)
async def delete_library_index(
    tenant_id: str,
    cache: CorpusMembershipCache = Depends(get_corpus_cache),
    index: VectorIndex = Depends(get_index),
) -> DeleteIndexResponse:
    await asyncio.to_thread(index.delete_namespace, tenant_id)
    cache.invalidate(tenant_id)
    logger.info("Deleted index namespace for tenant %s", tenant_id)
    return DeleteIndexResponse(tenant_id=tenant_id)
