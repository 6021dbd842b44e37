# =============================================================================
# Search API - Grounded Q&A over One Tenant's Library
# =============================================================================
#
# POST /search runs the query graph (retrieve -> synthesize) and maps its
# final state to the wire format:
#
#   answer | structured   the generated answer, [n] citation markers
#   references            one per source, in citation order
#   visuals               page images for PDF references (first few only)
#
# This endpoint is thin: typed BrokerErrors raised below it are rendered by
# the exception handler in main.py (400 / 502 / 503), and "no relevant
# sources" is a normal 200 with an empty answer.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

from fastapi import APIRouter, Depends

from mr_broker.agents.orchestrator import ask
from mr_broker.agents.retriever import Source
from mr_broker.api.deps import get_corpus_cache, require_token
from mr_broker.config import settings
from mr_broker.models.requests import SearchRequest
from mr_broker.models.responses import ErrorResponse, Reference, SearchResponse, Visual
from mr_broker.services.corpus_cache import CorpusMembershipCache
from mr_broker.services.document_store import PDF_MIME
from mr_broker.services.slides import slide_path

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Search"], dependencies=[Depends(require_token)])


def build_references(sources: Sequence[Source]) -> list[Reference]:
    return [
        Reference(
            ref=s.ref,
            file_id=s.file_id,
            file_name=s.file_name,
            page=s.page,
            file_url=s.source_link,
            report_tag=s.report_tag,
        )
        for s in sources
    ]


def build_visuals(sources: Sequence[Source], limit: int) -> list[Visual]:
    """Page images for PDF sources, one per (file, page), at most `limit`."""
    visuals: list[Visual] = []
    seen: set[tuple[str, int]] = set()
    for s in sources:
        if len(visuals) >= limit:
            break
        if s.mime_type != PDF_MIME or (s.file_id, s.page) in seen:
            continue
        seen.add((s.file_id, s.page))
        visuals.append(Visual(file_id=s.file_id, page=s.page, image_url=slide_path(s.file_id, s.page)))
    return visuals


@router.post(
    "/search",
    response_model=SearchResponse,
    response_model_exclude_none=True,
    summary="Ask a question of a tenant's research library",
    responses={
        400: {"model": ErrorResponse, "description": "Missing or invalid field"},
        502: {"model": ErrorResponse, "description": "Embedding, index or LLM failure"},
        503: {"model": ErrorResponse, "description": "Service not configured"},
    },
)
async def search_endpoint(
    request: SearchRequest,
    cache: CorpusMembershipCache = Depends(get_corpus_cache),
) -> SearchResponse:
    logger.info(
        "Search request: tenant=%s, query='%s', structured=%s",
        request.tenant_id, request.user_query[:80], request.structured,
    )

    result = await ask(
        request.tenant_id,
        request.user_query,
        top_k=request.top_k,
        structured=request.structured,
        cache=cache,
    )

    sources = result.get("sources", [])
    return SearchResponse(
        answer=result.get("answer", ""),
        structured=result.get("structured_answer"),
        references=build_references(sources),
        visuals=build_visuals(sources, settings.max_visuals),
        model=result.get("model", "n/a"),
    )
