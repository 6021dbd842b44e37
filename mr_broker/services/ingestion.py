# =============================================================================
# Ingestion Batch Runner - One Tenant Library into One Namespace
# =============================================================================
#
# Pipeline per document (strictly sequential):
#   extract -> chunk -> embed -> upsert
#
# Documents run concurrently on a bounded thread pool. Every document ends
# with a DocumentOutcome, and no single document can abort the batch:
#   - succeeded: chunks written to the tenant namespace
#   - skipped:   ExtractionError (unsupported, no text, unreadable PDF) or
#                the batch was cancelled before the document started
#   - errored:   a dependency failed (document store, embeddings, index)
#
# CANCELLATION:
# Setting the cancel event stops new documents from starting. Documents
# already running finish (or fail) on their own.
#
# ORPHAN CLEANUP:
# After a batch that ran to completion, entries whose file_id is no longer
# under the tenant folder are deleted from the namespace.
# =============================================================================

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from mr_broker.config import settings
from mr_broker.errors import BrokerError, ExtractionError, VectorIndexError
from mr_broker.services.chunker import chunk_document
from mr_broker.services.document_store import (
    SUPPORTED_MIME_TYPES,
    DocumentFile,
    DocumentStore,
    walk_folder,
)
from mr_broker.services.embedder import embed_batch
from mr_broker.services.extractor import extract_document
from mr_broker.services.indexer import upsert_document
from mr_broker.services.recency import label_date
from mr_broker.services.vectorstore import VectorIndex

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
ERRORED = "errored"

CANCELLED_REASON = "cancelled"


# ---------------------------------------------------------------------------
# Report Type Tagging
# ---------------------------------------------------------------------------

# First match wins
REPORT_TAG_RULES: list[tuple[str, re.Pattern]] = [
    ("conjoint", re.compile(r"(conjoint|cbc|acbc|choice\s*model|dcm)")),
    ("ATU", re.compile(r"\batu\b|usage\s*&?\s*attitudes|u&a")),
    ("message testing", re.compile(
        r"(message\s*testing|message\s*eval|messag(e|ing)\s*(test|evaluation)|positioning)"
    )),
    ("tracker", re.compile(r"(tracker|tracking|wave\s*\d+)")),
    ("segmentation", re.compile(r"(segment|segmentation)")),
    ("pricing", re.compile(r"(pricing|price\s*(test|study))")),
    ("demand", re.compile(r"\bdemand\b")),
    ("concept test", re.compile(r"(concept\s*test|concept\s*study)")),
    ("qualitative", re.compile(r"\bqual(itative)?\b|focus\s*group|idi\b")),
    ("quantitative", re.compile(r"\bquant(itative)?\b|\bsurvey\b")),
    ("PMR", re.compile(r"\bpmr\b|primary\s*market\s*research")),
]

DEFAULT_REPORT_TAG = "report"


def infer_report_tag(name: str, text: str = "") -> str:
    """Classify a report by keywords in its name and text, e.g. "tracker"."""
    haystack = f"{name} {text}".lower()
    for tag, pattern in REPORT_TAG_RULES:
        if pattern.search(haystack):
            return tag
    return DEFAULT_REPORT_TAG


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class DocumentOutcome:
    """What happened to one document during a batch."""

    file_id: str
    name: str
    mime_type: str
    status: str                # succeeded | skipped | errored
    reason: str = ""
    chunks: int = 0
    report_tag: str = ""
    month_tag: str = ""
    year_tag: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.file_id,
            "name": self.name,
            "mimeType": self.mime_type,
            "status": self.status,
            "reason": self.reason,
            "chunks": self.chunks,
            "reportTag": self.report_tag,
            "monthTag": self.month_tag,
            "yearTag": self.year_tag,
        }


@dataclass
class IngestionSummary:
    tenant_id: str
    files_seen: int = 0
    unsupported_count: int = 0
    outcomes: list[DocumentOutcome] = field(default_factory=list)
    orphans_removed: int = 0
    namespace_entry_count: int | None = None
    cancelled: bool = False

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def ingested_count(self) -> int:
        return self._count(SUCCEEDED)

    @property
    def skipped_count(self) -> int:
        """Unsupported files plus documents skipped during the batch."""
        return self.unsupported_count + self._count(SKIPPED)

    @property
    def errors_count(self) -> int:
        return self._count(ERRORED)

    @property
    def upserted(self) -> int:
        return sum(o.chunks for o in self.outcomes)

    def to_dict(self) -> dict:
        """JSON-safe form, stored as the Celery task result."""
        return {
            "tenantId": self.tenant_id,
            "summary": {
                "filesSeen": self.files_seen,
                "ingestedCount": self.ingested_count,
                "skippedCount": self.skipped_count,
                "errorsCount": self.errors_count,
                "upserted": self.upserted,
                "orphansRemoved": self.orphans_removed,
                "namespaceVectorCount": self.namespace_entry_count,
                "cancelled": self.cancelled,
            },
            "documents": [o.to_dict() for o in self.outcomes],
        }


# ---------------------------------------------------------------------------
# One Document
# ---------------------------------------------------------------------------


def ingest_document(
    tenant_id: str,
    file: DocumentFile,
    *,
    store: DocumentStore,
    index: VectorIndex,
    embed: Callable[[Sequence[str]], list[list[float]]] = embed_batch,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> DocumentOutcome:
    """
    Extract, chunk, embed and upsert one document.

    Never raises for document-level failures: they are reported in the
    returned outcome so that sibling documents keep going.
    """
    outcome = DocumentOutcome(
        file_id=file.id, name=file.name, mime_type=file.mime_type, status=SUCCEEDED
    )

    try:
        extracted = extract_document(store, file)
    except ExtractionError as exc:
        outcome.status, outcome.reason = SKIPPED, exc.detail
        outcome.report_tag = infer_report_tag(file.name)
        logger.warning("Skipped '%s' (%s): %s", file.name, file.id, exc.detail)
        return outcome
    except BrokerError as exc:
        outcome.status, outcome.reason = ERRORED, f"{exc.kind}: {exc.detail}"
        logger.warning("Failed to read '%s' (%s): %s", file.name, file.id, exc.detail)
        return outcome

    label = label_date(f"{file.name}\n{extracted.text}", file.modified_time)
    outcome.month_tag, outcome.year_tag = label.month, label.year
    outcome.report_tag = infer_report_tag(file.name, extracted.text)

    chunks = chunk_document(
        extracted.text,
        chunk_size or settings.chunk_size,
        chunk_overlap if chunk_overlap is not None else settings.chunk_overlap,
        page_starts=extracted.page_starts or None,
    )
    if not chunks:
        outcome.status, outcome.reason = SKIPPED, "no text"
        return outcome

    try:
        result = upsert_document(
            tenant_id,
            file.id,
            file.name,
            [c.content for c in chunks],
            file.web_view_link,
            file.modified_time,
            index=index,
            page_numbers=[c.page_number for c in chunks],
            report_tag=outcome.report_tag,
            extra_metadata={
                "mime_type": file.mime_type,
                "month_tag": outcome.month_tag,
                "year_tag": outcome.year_tag,
            },
            embed=embed,
        )
    except BrokerError as exc:
        outcome.status, outcome.reason = ERRORED, f"{exc.kind}: {exc.detail}"
        logger.warning("Failed to index '%s' (%s): %s", file.name, file.id, exc.detail)
        return outcome

    outcome.chunks = result.chunks_written
    return outcome


# ---------------------------------------------------------------------------
# Whole Library
# ---------------------------------------------------------------------------


def ingest_library(
    tenant_id: str,
    *,
    store: DocumentStore,
    index: VectorIndex,
    cancel_event: threading.Event | None = None,
    concurrency: int | None = None,
    embed: Callable[[Sequence[str]], list[list[float]]] = embed_batch,
    cleanup_orphans: bool = True,
) -> IngestionSummary:
    """
    Ingest every supported document under a tenant's folder.

    Args:
        tenant_id: Tenant id, which is also its root folder id and namespace.
        store: Document store to read from.
        index: Vector index to write to.
        cancel_event: Set it to stop starting new documents.
        concurrency: Documents processed at once (default settings.ingest_concurrency).
        embed: Embedding function (injectable for tests).
        cleanup_orphans: Delete entries of documents no longer in the folder.

    Returns:
        IngestionSummary with one outcome per supported document.

    Raises:
        DocumentStoreError: The folder could not be listed.
    """
    cancel_event = cancel_event or threading.Event()
    workers = max(concurrency or settings.ingest_concurrency, 1)

    files = list(walk_folder(store, tenant_id))
    supported = [f for f in files if f.mime_type in SUPPORTED_MIME_TYPES]
    summary = IngestionSummary(
        tenant_id=tenant_id,
        files_seen=len(files),
        unsupported_count=len(files) - len(supported),
    )

    logger.info(
        "Ingesting tenant %s: %d files, %d supported, concurrency=%d",
        tenant_id, len(files), len(supported), workers,
    )

    def _run_one(file: DocumentFile) -> DocumentOutcome:
        if cancel_event.is_set():
            return DocumentOutcome(
                file_id=file.id, name=file.name, mime_type=file.mime_type,
                status=SKIPPED, reason=CANCELLED_REASON,
            )
        try:
            return ingest_document(tenant_id, file, store=store, index=index, embed=embed)
        except Exception as exc:
            logger.exception("Unexpected failure ingesting '%s' (%s)", file.name, file.id)
            return DocumentOutcome(
                file_id=file.id, name=file.name, mime_type=file.mime_type,
                status=ERRORED, reason=f"unexpected error: {exc}",
            )

    # Queued jobs only start when a worker frees up, so a set event stops them
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
        try:
            summary.outcomes = list(pool.map(_run_one, supported))
        except BaseException:
            # Interrupted (soft time limit, worker shutdown): queued jobs skip
            cancel_event.set()
            raise

    summary.cancelled = cancel_event.is_set()

    if cleanup_orphans and not summary.cancelled:
        summary.orphans_removed = remove_orphans(tenant_id, {f.id for f in files}, index=index)

    try:
        summary.namespace_entry_count = index.describe_stats().get(tenant_id, 0)
    except VectorIndexError as exc:
        # Informational only
        logger.warning("Could not count entries for tenant %s: %s", tenant_id, exc)

    logger.info(
        "Ingestion finished for tenant %s: %d succeeded, %d skipped, %d errored, "
        "%d entries upserted, %d orphans removed, cancelled=%s",
        tenant_id, summary.ingested_count, summary.skipped_count,
        summary.errors_count, summary.upserted, summary.orphans_removed,
        summary.cancelled,
    )
    return summary


def remove_orphans(tenant_id: str, present_ids: set[str], *, index: VectorIndex) -> int:
    """Delete entries of documents that are no longer under the tenant folder."""
    orphaned = index.list_file_ids(tenant_id) - present_ids
    if not orphaned:
        return 0
    removed = index.delete_file_ids(tenant_id, orphaned)
    logger.info(
        "Removed %d entries of %d orphaned documents from tenant %s",
        removed, len(orphaned), tenant_id,
    )
    return removed
