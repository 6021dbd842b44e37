# =============================================================================
# Index Writer - Embed a Document's Chunks and Upsert Them Idempotently
# =============================================================================
#
# Pipeline position: last step of ingestion (extract -> chunk -> embed -> upsert)
#
# Every chunk is written under entry_id(tenant, document_name, chunk_index),
# so ingesting the same document twice overwrites the same entries. When a
# document shrinks, entries past its new last chunk are pruned, which keeps
# the entry count equal to the chunk count after every ingest. Entries of
# the same file id under an older name (the file was renamed) are deleted
# too.
#
# All chunks are embedded BEFORE anything is written: an embedding failure
# leaves the previous version of the document intact.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from mr_broker.services.embedder import embed_batch
from mr_broker.services.vectorstore import VectorEntry, VectorIndex, entry_id

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    chunks_written: int
    pruned: int = 0


def upsert_document(
    tenant_id: str,
    document_id: str,
    document_name: str,
    chunks: Sequence[str],
    source_link: str,
    modified_at: str | None,
    *,
    index: VectorIndex,
    page_numbers: Sequence[int | None] | None = None,
    report_tag: str | None = None,
    extra_metadata: dict[str, Any] | None = None,
    embed: Callable[[Sequence[str]], list[list[float]]] = embed_batch,
) -> UpsertResult:
    """
    Embed all chunks of one document and write them to the tenant namespace.

    Args:
        tenant_id: Tenant (namespace) the document belongs to.
        document_id: Document store file id.
        document_name: Display name; part of every entry id.
        chunks: Chunk texts in document order.
        source_link: Link back to the document in the store.
        modified_at: Store modification time (ISO-8601) at ingestion.
        index: Vector index to write to.
        page_numbers: Optional page/slide number per chunk.
        report_tag: Optional inferred report type.
        extra_metadata: Extra keys copied onto every entry.
        embed: Embedding function (injectable for tests).

    Returns:
        UpsertResult with the number of entries written and pruned.

    Raises:
        EmbeddingServiceError: Embedding failed; nothing was written.
        VectorIndexError: The index rejected the write.
    """
    if page_numbers is not None and len(page_numbers) != len(chunks):
        raise ValueError("page_numbers must have one entry per chunk")

    vectors = embed(list(chunks)) if chunks else []

    entries = []
    for i, (text, vector) in enumerate(zip(chunks, vectors, strict=True)):
        metadata: dict[str, Any] = {
            **(extra_metadata or {}),
            "tenant_id": tenant_id,
            "file_id": document_id,
            "document_name": document_name,
            "chunk_index": i,
            "source_link": source_link or "",
            "modified_at": modified_at or "",
            "report_tag": report_tag or "",
        }
        page = page_numbers[i] if page_numbers is not None else None
        if page is not None:
            metadata["page"] = page
        entries.append(VectorEntry(
            id=entry_id(tenant_id, document_name, i),
            vector=vector,
            text=text,
            metadata=metadata,
        ))

    written = index.upsert(tenant_id, entries)
    pruned = index.prune_document(tenant_id, document_name, from_chunk=len(entries))
    # Entries written before the file was renamed
    pruned += index.prune_renamed(tenant_id, document_id, document_name)

    logger.info(
        "Indexed '%s' for tenant %s: %d entries written, %d stale pruned",
        document_name, tenant_id, written, pruned,
    )
    return UpsertResult(chunks_written=written, pruned=pruned)
