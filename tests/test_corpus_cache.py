# =============================================================================
# Unit Tests - Corpus Membership Cache and Library Listing Cache
# =============================================================================

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError, TransportError

from mr_broker.errors import ConfigurationError, DocumentStoreError, StalenessFilterEmptyError
from mr_broker.services.corpus_cache import (
    EMPTY_SNAPSHOT,
    CorpusMembershipCache,
    CorpusSnapshot,
    LibraryListCache,
    require_ids,
)
from mr_broker.services.document_store import GOOGLE_DOC_MIME, PDF_MIME, GoogleDriveStore


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def folder(store):
    store.add_folder("T", "T-sub")
    store.add_file("T", "doc", "Topline", GOOGLE_DOC_MIME, "2024-06-01T00:00:00Z")
    store.add_file("T-sub", "pdf", "Deck.pdf", PDF_MIME, "2024-07-01T00:00:00Z")
    store.add_file("T", "img", "logo.png", "image/png")
    return store


class TestRequireIds:
    def test_empty_snapshot_denies(self):
        with pytest.raises(StalenessFilterEmptyError):
            require_ids(EMPTY_SNAPSHOT)

    def test_populated_but_empty_folder_denies(self):
        with pytest.raises(StalenessFilterEmptyError, match="populated"):
            require_ids(CorpusSnapshot(populated=True))

    def test_returns_ids(self):
        assert require_ids(CorpusSnapshot(ids=frozenset({"a"}))) == {"a"}


class TestCorpusMembershipCache:
    def test_refresh_collects_supported_documents_in_subtree(self, folder, clock):
        cache = CorpusMembershipCache(folder, ttl_seconds=60, clock=clock)

        snapshot = _run(cache.get_snapshot("T"))

        assert snapshot.populated
        assert snapshot.ids == {"doc", "pdf"}
        assert "img" not in snapshot
        assert snapshot.modified["pdf"] > snapshot.modified["doc"]

    def test_snapshot_served_within_ttl(self, folder, clock):
        cache = CorpusMembershipCache(folder, ttl_seconds=60, clock=clock)
        first = _run(cache.get_snapshot("T"))
        calls = folder.list_calls

        clock.now += 59
        assert _run(cache.get_snapshot("T")) is first
        assert folder.list_calls == calls

    def test_refreshes_after_ttl(self, folder, clock):
        cache = CorpusMembershipCache(folder, ttl_seconds=60, clock=clock)
        _run(cache.get_snapshot("T"))
        folder.remove("T", "doc")

        clock.now += 61
        assert _run(cache.get_snapshot("T")).ids == {"pdf"}

    def test_failed_refresh_keeps_previous_snapshot(self, folder, clock):
        cache = CorpusMembershipCache(folder, ttl_seconds=60, clock=clock)
        first = _run(cache.get_snapshot("T"))

        folder.fail_listing = True
        clock.now += 61

        assert _run(cache.get_snapshot("T")) is first

    def test_failed_first_refresh_is_empty(self, folder, clock):
        folder.fail_listing = True
        cache = CorpusMembershipCache(folder, clock=clock)

        snapshot = _run(cache.get_snapshot("T"))

        assert snapshot is EMPTY_SNAPSHOT
        assert not snapshot.populated

    def test_invalidate_forces_refresh_but_keeps_fallback(self, folder, clock):
        cache = CorpusMembershipCache(folder, ttl_seconds=60, clock=clock)
        _run(cache.get_snapshot("T"))
        cache.invalidate("T")
        folder.fail_listing = True

        snapshot = _run(cache.get_snapshot("T"))

        assert snapshot.ids == {"doc", "pdf"}

    def test_tenants_are_independent(self, folder, clock):
        folder.add_file("U", "other", "Other tenant doc", GOOGLE_DOC_MIME)
        cache = CorpusMembershipCache(folder, clock=clock)

        assert _run(cache.get_snapshot("U")).ids == {"other"}
        assert _run(cache.get_snapshot("T")).ids == {"doc", "pdf"}
        assert cache.peek("V") is EMPTY_SNAPSHOT


class TestLibraryListCache:
    def test_lists_folders_sorted_and_caches(self, store, clock):
        store.add_folder("root", "b", "beta Foods")
        store.add_folder("root", "a", "Acme")
        store.add_file("root", "stray", "stray.pdf", PDF_MIME)
        cache = LibraryListCache(store, "root", ttl_seconds=60, clock=clock)

        folders = _run(cache.get())
        calls = store.list_calls
        _run(cache.get())

        assert [f.name for f in folders] == ["Acme", "beta Foods"]
        assert store.list_calls == calls

    def test_invalidate(self, store, clock):
        store.add_folder("root", "a", "Acme")
        cache = LibraryListCache(store, "root", clock=clock)
        _run(cache.get())
        store.add_folder("root", "b", "Beta")

        cache.invalidate()

        assert len(_run(cache.get())) == 2

    def test_missing_root_is_configuration_error(self, store):
        with pytest.raises(ConfigurationError):
            _run(LibraryListCache(store, "").get())


class TestDriveCredentialFailure:
    """A token refresh failing inside a Drive call is a store error, not a crash."""

    def test_expired_credentials_serve_previous_snapshot(self, clock):
        drive = MagicMock()
        drive.files.return_value.list.return_value.execute.side_effect = [
            {"files": [{"id": "a", "name": "Topline", "mimeType": GOOGLE_DOC_MIME,
                        "modifiedTime": "2024-06-01T00:00:00Z"}]},
            TransportError("token endpoint unreachable"),
        ]
        store = GoogleDriveStore(credentials=MagicMock())
        cache = CorpusMembershipCache(store, ttl_seconds=60, clock=clock)

        with patch.object(GoogleDriveStore, "_service", return_value=drive):
            first = _run(cache.get_snapshot("T"))
            clock.now += 61
            second = _run(cache.get_snapshot("T"))

        assert first.ids == {"a"}
        assert second is first

    def test_refresh_error_is_document_store_error(self):
        request = MagicMock()
        request.execute.side_effect = RefreshError("invalid_grant")
        store = GoogleDriveStore(credentials=MagicMock())

        with pytest.raises(DocumentStoreError, match="credentials"):
            store._execute(request, "list folder T")
