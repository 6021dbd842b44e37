# =============================================================================
# Unit Tests - Vector Index (ChromaDB backend)
# =============================================================================
#
# Uses ChromaDB's in-process mode (no external services needed). The client
# is shared across the session, so every test works in its own namespace.
# pgvector is not exercised here - it requires a running PostgreSQL instance.
# =============================================================================

import asyncio

from mr_broker.services.vectorstore import VectorEntry, VectorMatch, entry_id


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _entry(tenant: str, name: str, i: int, vector, file_id: str = "f1") -> VectorEntry:
    return VectorEntry(
        id=entry_id(tenant, name, i),
        vector=vector,
        text=f"{name} chunk {i}",
        metadata={"file_id": file_id, "document_name": name, "chunk_index": i},
    )


class TestEntryId:
    def test_shape(self):
        parts = entry_id("tenant-a", "Brand Tracker.pdf", 3).split(":")
        assert len(parts) == 3
        assert all(len(p) == 16 for p in parts[:2])
        assert parts[2] == "3"

    def test_deterministic_and_tenant_scoped(self):
        assert entry_id("t", "doc", 0) == entry_id("t", "doc", 0)
        assert entry_id("t1", "doc", 0) != entry_id("t2", "doc", 0)


class TestChromaVectorIndex:
    """Tests for ChromaVectorIndex (in-process mode)."""

    def test_upsert_is_idempotent(self, chroma_index, tenant_id):
        entries = [_entry(tenant_id, "doc", i, [1.0, float(i), 0.0]) for i in range(3)]
        chroma_index.upsert(tenant_id, entries)
        chroma_index.upsert(tenant_id, entries)

        assert chroma_index.describe_stats()[tenant_id] == 3

    def test_query_returns_nearest_first(self, chroma_index, tenant_id):
        chroma_index.upsert(tenant_id, [
            _entry(tenant_id, "a", 0, [1.0, 0.0, 0.0], file_id="fa"),
            _entry(tenant_id, "b", 0, [0.0, 1.0, 0.0], file_id="fb"),
        ])

        matches = _run(chroma_index.query(tenant_id, [1.0, 0.1, 0.0], top_k=2))

        assert len(matches) == 2
        assert all(isinstance(m, VectorMatch) for m in matches)
        assert matches[0].file_id == "fa"
        assert matches[0].score >= matches[1].score
        assert matches[0].text == "a chunk 0"

    def test_namespaces_are_isolated(self, chroma_index, tenant_id):
        other = f"{tenant_id}-other"
        chroma_index.upsert(tenant_id, [_entry(tenant_id, "mine", 0, [1.0, 0.0, 0.0])])
        chroma_index.upsert(other, [_entry(other, "theirs", 0, [1.0, 0.0, 0.0])])

        matches = _run(chroma_index.query(tenant_id, [1.0, 0.0, 0.0], top_k=10))

        assert [m.metadata["document_name"] for m in matches] == ["mine"]

    def test_file_id_filter(self, chroma_index, tenant_id):
        chroma_index.upsert(tenant_id, [
            _entry(tenant_id, "keep", 0, [1.0, 0.0, 0.0], file_id="keep"),
            _entry(tenant_id, "gone", 0, [1.0, 0.0, 0.0], file_id="gone"),
        ])

        matches = _run(chroma_index.query(tenant_id, [1.0, 0.0, 0.0], 10, file_ids={"keep"}))

        assert {m.file_id for m in matches} == {"keep"}

    def test_empty_file_id_filter_matches_nothing(self, chroma_index, tenant_id):
        chroma_index.upsert(tenant_id, [_entry(tenant_id, "doc", 0, [1.0, 0.0, 0.0])])
        assert _run(chroma_index.query(tenant_id, [1.0, 0.0, 0.0], 10, file_ids=set())) == []

    def test_query_empty_namespace(self, chroma_index, tenant_id):
        assert _run(chroma_index.query(tenant_id, [1.0, 0.0, 0.0], 5)) == []

    def test_prune_document(self, chroma_index, tenant_id):
        chroma_index.upsert(
            tenant_id, [_entry(tenant_id, "doc", i, [1.0, float(i), 0.0]) for i in range(5)]
        )

        pruned = chroma_index.prune_document(tenant_id, "doc", from_chunk=2)

        assert pruned == 3
        assert chroma_index.describe_stats()[tenant_id] == 2

    def test_prune_renamed_keeps_current_name_and_other_files(self, chroma_index, tenant_id):
        chroma_index.upsert(tenant_id, [
            _entry(tenant_id, "Tracker 2023", 0, [1.0, 0.0, 0.0], file_id="fa"),
            _entry(tenant_id, "Tracker 2023", 1, [1.0, 1.0, 0.0], file_id="fa"),
            _entry(tenant_id, "Tracker 2024", 0, [0.0, 1.0, 0.0], file_id="fa"),
            _entry(tenant_id, "Pricing", 0, [0.0, 0.0, 1.0], file_id="fb"),
        ])

        pruned = chroma_index.prune_renamed(tenant_id, "fa", "Tracker 2024")

        assert pruned == 2
        stored = chroma_index._collection(tenant_id).get(include=["metadatas"])
        assert sorted(m["document_name"] for m in stored["metadatas"]) == ["Pricing", "Tracker 2024"]

    def test_list_and_delete_file_ids(self, chroma_index, tenant_id):
        chroma_index.upsert(tenant_id, [
            _entry(tenant_id, "a", 0, [1.0, 0.0, 0.0], file_id="fa"),
            _entry(tenant_id, "a", 1, [1.0, 1.0, 0.0], file_id="fa"),
            _entry(tenant_id, "b", 0, [0.0, 1.0, 0.0], file_id="fb"),
        ])
        assert chroma_index.list_file_ids(tenant_id) == {"fa", "fb"}

        removed = chroma_index.delete_file_ids(tenant_id, {"fa"})

        assert removed == 2
        assert chroma_index.list_file_ids(tenant_id) == {"fb"}

    def test_delete_namespace(self, chroma_index, tenant_id):
        chroma_index.upsert(tenant_id, [_entry(tenant_id, "doc", 0, [1.0, 0.0, 0.0])])

        chroma_index.delete_namespace(tenant_id)
        chroma_index.delete_namespace(tenant_id)  # absent namespace is a no-op

        assert tenant_id not in chroma_index.describe_stats()
