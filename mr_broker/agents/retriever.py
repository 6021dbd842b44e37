# =============================================================================
# Retriever - Filtered Vector Search, One Source per Document, Newest First
# =============================================================================
#
# Query-time retrieval for one tenant:
#
#   1. EMBED the question
#   2. SEARCH the tenant namespace for the top_k nearest entries, restricted
#      to documents still present in the tenant folder (membership cache)
#   3. DEDUPE to the first (highest-similarity) match per document
#   4. RANK by recency (live modified time -> filename date -> stored time)
#   5. TRUNCATE to max_sources and number the survivors 1..n
#
# Those numbers are the citation markers the synthesizer asks the model to
# use, so the order returned here IS the reference order.
#
# Fail closed: with filtering on and an empty authoritative set, the
# retriever returns no sources at all rather than unfiltered matches.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from mr_broker.config import settings
from mr_broker.errors import (
    RetrievalError,
    StalenessFilterEmptyError,
    ValidationError,
    VectorIndexError,
)
from mr_broker.services.corpus_cache import CorpusMembershipCache, require_ids
from mr_broker.services.embedder import embed_query
from mr_broker.services.recency import display_name, resolve_recency
from mr_broker.services.vectorstore import VectorIndex, VectorMatch

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class Source:
    """A deduplicated, ranked match selected to ground an answer."""

    ref: int              # 1-based citation number
    file_id: str
    file_name: str        # display name, version/date suffixes stripped
    raw_name: str
    page: int
    text: str
    source_link: str = ""
    mime_type: str = ""
    similarity: float = 0.0
    recency: float = 0.0  # epoch seconds, 0 = unknown
    report_tag: str = ""
    date_label: str = ""  # e.g. "June 2024"


# ---------------------------------------------------------------------------
# Pure Steps
# ---------------------------------------------------------------------------


def dedupe_matches(matches: Sequence[VectorMatch]) -> list[VectorMatch]:
    """
    Keep the first match of every document.

    Matches arrive in descending similarity, so the first one seen for a
    document is its best.
    """
    seen: set[str] = set()
    unique: list[VectorMatch] = []
    for match in matches:
        key = match.file_id or str(match.metadata.get("document_name", match.id))
        if key in seen:
            continue
        seen.add(key)
        unique.append(match)
    return unique


def rank_sources(
    matches: Sequence[VectorMatch],
    max_sources: int,
    live_modified: Mapping[str, float] | None = None,
) -> list[Source]:
    """Resolve recency, sort newest first (stable), truncate, number 1..n."""
    candidates = []
    for match in matches:
        meta = match.metadata
        raw_name = str(meta.get("document_name", ""))
        recency = resolve_recency(
            match.file_id, raw_name, live_modified, str(meta.get("modified_at") or "")
        )
        candidates.append((recency, match, raw_name))

    candidates.sort(key=lambda c: c[0], reverse=True)

    sources = []
    for ref, (recency, match, raw_name) in enumerate(candidates[:max_sources], start=1):
        meta = match.metadata
        page = meta.get("page")
        month_year = f"{meta.get('month_tag', '')} {meta.get('year_tag', '')}".strip()
        sources.append(Source(
            ref=ref,
            file_id=match.file_id,
            file_name=display_name(raw_name) if raw_name else match.file_id,
            raw_name=raw_name,
            page=int(page) if page not in (None, "") else 1,
            text=match.text,
            source_link=str(meta.get("source_link", "")),
            mime_type=str(meta.get("mime_type", "")),
            similarity=match.score,
            recency=recency,
            report_tag=str(meta.get("report_tag", "")),
            date_label=month_year,
        ))
    return sources


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def retrieve(
    tenant_id: str,
    query_text: str,
    top_k: int | None = None,
    max_sources: int | None = None,
    *,
    index: VectorIndex,
    cache: CorpusMembershipCache | None = None,
    filter_enabled: bool | None = None,
    embed: Callable[[str], list[float]] | None = None,
) -> list[Source]:
    """
    Retrieve ranked, citation-numbered sources for a question.

    Args:
        tenant_id: Tenant whose namespace is searched.
        query_text: The user's question.
        top_k: Nearest entries to request (default settings.retrieval_top_k).
        max_sources: Sources kept after ranking (default 8).
        index: Vector index to search.
        cache: Membership cache; required when filtering is enabled.
        filter_enabled: Restrict to documents currently in the folder
            (default settings.staleness_filter_enabled).
        embed: Query embedding function (default embed_query).

    Returns:
        Sources in citation order. Empty when nothing matched or the
        authoritative document set is empty.

    Raises:
        ValidationError: Missing tenant or question.
        EmbeddingServiceError: The question could not be embedded.
        RetrievalError: The vector index failed or timed out.
    """
    if not tenant_id:
        raise ValidationError("tenantId is required")
    if not query_text or not query_text.strip():
        raise ValidationError("userQuery is required")

    top_k = top_k or settings.retrieval_top_k
    max_sources = max_sources or settings.retrieval_max_sources
    if filter_enabled is None:
        filter_enabled = settings.staleness_filter_enabled

    file_ids = None
    live_modified: Mapping[str, float] | None = None
    if filter_enabled:
        if cache is None:
            raise ValueError("a membership cache is required when filtering is enabled")
        snapshot = await cache.get_snapshot(tenant_id)
        try:
            file_ids = require_ids(snapshot)
        except StalenessFilterEmptyError as exc:
            logger.warning("Denying retrieval for tenant %s: %s", tenant_id, exc.detail)
            return []
        live_modified = snapshot.modified
    elif cache is not None:
        live_modified = cache.peek(tenant_id).modified

    vector = await asyncio.to_thread(embed or embed_query, query_text)

    try:
        matches = await asyncio.wait_for(
            index.query(tenant_id, vector, top_k, file_ids=file_ids),
            timeout=settings.vector_query_timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        raise RetrievalError(
            f"Vector search timed out after {settings.vector_query_timeout_seconds}s"
        ) from exc
    except VectorIndexError as exc:
        raise RetrievalError(f"Vector search failed: {exc.detail}") from exc

    unique = dedupe_matches(matches)
    sources = rank_sources(unique, max_sources, live_modified)

    logger.info(
        "Retrieved %d matches -> %d documents -> %d sources (tenant=%s, filtered=%s)",
        len(matches), len(unique), len(sources), tenant_id, filter_enabled,
    )
    return sources
