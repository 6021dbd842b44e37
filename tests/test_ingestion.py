# =============================================================================
# Unit Tests - Ingestion Batch Runner
# =============================================================================
#
# Full extract -> chunk -> embed -> upsert runs against the in-memory
# document store and the in-process Chroma index, with fake embeddings.
# =============================================================================

import asyncio
import threading

import pytest

from mr_broker.agents.retriever import retrieve
from mr_broker.errors import DocumentStoreError, EmbeddingServiceError, VectorIndexError
from mr_broker.services.document_store import GOOGLE_DOC_MIME, GOOGLE_SLIDES_MIME
from mr_broker.services.ingestion import (
    CANCELLED_REASON,
    ERRORED,
    SKIPPED,
    SUCCEEDED,
    infer_report_tag,
    ingest_document,
    ingest_library,
)

TRACKER_TEXT = ("Brand awareness rose to 41 percent among category buyers. " * 100)[:4500]


@pytest.fixture
def library(store, tenant_id):
    """Tenant folder with a nested subfolder, one unsupported and one blank file."""
    store.add_folder(tenant_id, f"{tenant_id}-sub", "2024 waves")
    store.add_file(f"{tenant_id}-sub", "tracker", "Brand Tracker June 2024", GOOGLE_DOC_MIME)
    store.texts["tracker"] = TRACKER_TEXT
    store.add_file(tenant_id, "pricing", "Pricing Study Q1 2024", GOOGLE_DOC_MIME)
    store.texts["pricing"] = "Price sensitivity peaks at the 4.99 price point."
    store.add_file(tenant_id, "blank", "Empty notes", GOOGLE_DOC_MIME)
    store.texts["blank"] = "   "
    store.add_file(tenant_id, "logo", "logo.png", "image/png")
    return store


def _by_id(summary):
    return {o.file_id: o for o in summary.outcomes}


class TestInferReportTag:
    @pytest.mark.parametrize("name, text, expected", [
        ("Acme Conjoint Readout", "", "conjoint"),
        ("U&A 2024", "", "ATU"),
        ("Positioning study", "", "message testing"),
        ("Brand Tracker Wave 3", "", "tracker"),
        ("Needs-based segmentation", "", "segmentation"),
        ("Price test results", "", "pricing"),
        ("Concept test survey", "", "concept test"),
        ("Q3 deck", "focus group findings", "qualitative"),
        ("Online survey topline", "", "quantitative"),
        ("PMR deep dive", "", "PMR"),
        ("Misc", "", "report"),
    ])
    def test_rules_in_order(self, name, text, expected):
        assert infer_report_tag(name, text) == expected


class TestIngestLibrary:
    def test_outcomes_and_summary(self, library, chroma_index, tenant_id, embed):
        summary = ingest_library(
            tenant_id, store=library, index=chroma_index, embed=embed, concurrency=2
        )
        outcomes = _by_id(summary)

        assert summary.files_seen == 4
        assert summary.unsupported_count == 1
        assert set(outcomes) == {"tracker", "pricing", "blank"}

        assert outcomes["tracker"].status == SUCCEEDED
        assert outcomes["tracker"].chunks == 3
        assert outcomes["tracker"].report_tag == "tracker"
        assert (outcomes["tracker"].month_tag, outcomes["tracker"].year_tag) == ("June", "2024")

        assert outcomes["pricing"].status == SUCCEEDED
        assert outcomes["pricing"].chunks == 1

        assert outcomes["blank"].status == SKIPPED
        assert outcomes["blank"].reason == "no text"

        assert summary.ingested_count == 2
        assert summary.skipped_count == 2  # unsupported + blank
        assert summary.errors_count == 0
        assert summary.upserted == 4
        assert summary.namespace_entry_count == 4
        assert chroma_index.describe_stats()[tenant_id] == 4

    def test_reingest_is_idempotent(self, library, chroma_index, tenant_id, embed):
        ingest_library(tenant_id, store=library, index=chroma_index, embed=embed)
        ingest_library(tenant_id, store=library, index=chroma_index, embed=embed)

        assert chroma_index.describe_stats()[tenant_id] == 4

    def test_removed_documents_are_cleaned_up(self, library, chroma_index, tenant_id, embed):
        ingest_library(tenant_id, store=library, index=chroma_index, embed=embed)
        library.remove(tenant_id, "pricing")

        summary = ingest_library(tenant_id, store=library, index=chroma_index, embed=embed)

        assert summary.orphans_removed == 1
        assert chroma_index.list_file_ids(tenant_id) == {"tracker"}

    def test_store_failure_does_not_abort_siblings(
        self, library, chroma_index, tenant_id, embed, monkeypatch
    ):
        original = library.export_as_text

        def flaky_export(file_id):
            if file_id == "pricing":
                raise DocumentStoreError("HTTP 500")
            return original(file_id)

        monkeypatch.setattr(library, "export_as_text", flaky_export)
        outcomes = _by_id(ingest_library(tenant_id, store=library, index=chroma_index, embed=embed))

        assert outcomes["pricing"].status == ERRORED
        assert "document_store_error" in outcomes["pricing"].reason
        assert outcomes["tracker"].status == SUCCEEDED

    def test_embedding_failure_is_per_document(self, library, chroma_index, tenant_id, embed):
        def picky_embed(texts):
            if any("Price" in t for t in texts):
                raise EmbeddingServiceError("rate limited")
            return embed(texts)

        outcomes = _by_id(
            ingest_library(tenant_id, store=library, index=chroma_index, embed=picky_embed)
        )

        assert outcomes["pricing"].status == ERRORED
        assert outcomes["tracker"].status == SUCCEEDED

    def test_unexpected_error_is_contained(self, library, chroma_index, tenant_id, embed):
        library.add_file(tenant_id, "ghost", "Ghost deck", GOOGLE_SLIDES_MIME)  # no content

        outcomes = _by_id(ingest_library(tenant_id, store=library, index=chroma_index, embed=embed))

        assert outcomes["ghost"].status == ERRORED
        assert outcomes["tracker"].status == SUCCEEDED

    def test_cancelled_batch_launches_nothing(self, library, chroma_index, tenant_id, embed):
        cancel = threading.Event()
        cancel.set()

        summary = ingest_library(
            tenant_id, store=library, index=chroma_index, embed=embed, cancel_event=cancel
        )

        assert summary.cancelled is True
        assert all(o.status == SKIPPED and o.reason == CANCELLED_REASON for o in summary.outcomes)
        assert summary.orphans_removed == 0
        assert chroma_index.list_file_ids(tenant_id) == set()

    def test_listing_failure_raises(self, library, chroma_index, tenant_id, embed):
        library.fail_listing = True
        with pytest.raises(DocumentStoreError):
            ingest_library(tenant_id, store=library, index=chroma_index, embed=embed)

    def test_entry_count_failure_keeps_results(
        self, library, chroma_index, tenant_id, embed, monkeypatch
    ):
        def failing_stats():
            raise VectorIndexError("Chroma stats failed: connection reset")

        monkeypatch.setattr(chroma_index, "describe_stats", failing_stats)
        summary = ingest_library(tenant_id, store=library, index=chroma_index, embed=embed)

        assert summary.namespace_entry_count is None
        assert summary.ingested_count == 2
        assert summary.to_dict()["summary"]["namespaceVectorCount"] is None

    def test_summary_wire_format(self, library, chroma_index, tenant_id, embed):
        result = ingest_library(
            tenant_id, store=library, index=chroma_index, embed=embed
        ).to_dict()

        assert result["tenantId"] == tenant_id
        assert set(result["summary"]) >= {
            "filesSeen", "ingestedCount", "skippedCount", "errorsCount",
            "upserted", "namespaceVectorCount",
        }
        assert {d["status"] for d in result["documents"]} == {SUCCEEDED, SKIPPED}


class TestIngestDocument:
    def test_pages_attached_to_entries(self, store, chroma_index, tenant_id, embed):
        slide = {"pageElements": [{"shape": {"text": {"textElements": [
            {"textRun": {"content": "Concept A wins on appeal"}},
        ]}}}]}
        deck = store.add_file(tenant_id, "deck", "Concept Test Readout", GOOGLE_SLIDES_MIME)
        store.presentations["deck"] = {"slides": [slide, slide]}

        outcome = ingest_document(
            tenant_id, deck, store=store, index=chroma_index, embed=embed,
            chunk_size=30, chunk_overlap=0,
        )

        assert outcome.status == SUCCEEDED
        stored = chroma_index._collection(tenant_id).get(include=["metadatas"])
        pages = sorted(m["page"] for m in stored["metadatas"])
        assert pages == [1, 2]
        assert outcome.report_tag == "concept test"


class TestIngestThenRetrieve:
    def test_multi_chunk_document_is_one_source(self, store, chroma_index, tenant_id, embed,
                                                 embed_one):
        store.add_file(tenant_id, "tracker", "Brand Tracker June 2024", GOOGLE_DOC_MIME)
        store.texts["tracker"] = TRACKER_TEXT

        summary = ingest_library(tenant_id, store=store, index=chroma_index, embed=embed)
        assert _by_id(summary)["tracker"].chunks == 3

        sources = asyncio.run(retrieve(
            tenant_id, "brand awareness", index=chroma_index,
            filter_enabled=False, embed=embed_one,
        ))

        assert len(sources) == 1
        assert (sources[0].ref, sources[0].file_id) == (1, "tracker")
        assert sources[0].file_name == "Brand Tracker June 2024"
