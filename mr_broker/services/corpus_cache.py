# =============================================================================
# Corpus Membership Cache - Which Documents Exist Right Now
# =============================================================================
#
# The vector index can hold entries for documents that were since removed
# from a tenant's folder. The membership cache keeps, per tenant, the
# authoritative set of document ids currently in the folder subtree, so
# queries can be restricted to it.
#
# SNAPSHOTS:
# Each tenant maps to an immutable CorpusSnapshot. A refresh builds a brand
# new snapshot off to the side and publishes it with a single dict
# assignment, so readers always see a complete set, never a half-built one.
# Concurrent refreshes may race; the last one wins with equally valid data.
#
# FAILURE POLICY:
#   - refresh fails, tenant was populated before -> keep serving the old set
#   - refresh fails, never populated             -> empty, unpopulated set
# Callers that filter treat an empty set as "deny all" (fail closed).
#
# LibraryListCache applies the same TTL to the list of tenant folders under
# the Drive root (GET /libraries).
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from mr_broker.errors import BrokerError, ConfigurationError, StalenessFilterEmptyError
from mr_broker.services.document_store import (
    SUPPORTED_MIME_TYPES,
    DocumentFile,
    DocumentStore,
    list_tenant_folders,
    walk_folder,
)
from mr_broker.services.recency import parse_iso_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorpusSnapshot:
    """Immutable view of one tenant's folder at `refreshed_at`."""

    ids: frozenset[str] = frozenset()
    modified: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    refreshed_at: float = 0.0
    populated: bool = False

    def __contains__(self, file_id: object) -> bool:
        return file_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)


EMPTY_SNAPSHOT = CorpusSnapshot()


def require_ids(snapshot: CorpusSnapshot) -> frozenset[str]:
    """
    The snapshot's id set, for use as a query filter.

    Raises:
        StalenessFilterEmptyError: If the set is empty.
    """
    if not snapshot.ids:
        state = "populated" if snapshot.populated else "never refreshed"
        raise StalenessFilterEmptyError(f"authoritative document set is empty ({state})")
    return snapshot.ids


class CorpusMembershipCache:
    """
    Per-tenant, time-bounded cache of the document ids under each tenant's
    folder. The tenant id is the folder id.

    Args:
        store: Document store to list folders from.
        ttl_seconds: How long a snapshot is served before a refresh.
        mime_filter: Mime types that count as documents.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        store: DocumentStore,
        ttl_seconds: float = 60.0,
        mime_filter: Collection[str] = SUPPORTED_MIME_TYPES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._mime_filter = frozenset(mime_filter)
        self._clock = clock
        self._snapshots: dict[str, CorpusSnapshot] = {}

    def peek(self, tenant_id: str) -> CorpusSnapshot:
        """The current snapshot without refreshing."""
        return self._snapshots.get(tenant_id, EMPTY_SNAPSHOT)

    async def get_snapshot(self, tenant_id: str) -> CorpusSnapshot:
        """Return a fresh-enough snapshot, refreshing it when older than the TTL."""
        current = self._snapshots.get(tenant_id)
        if current is not None and self._clock() - current.refreshed_at < self._ttl:
            return current
        return await self.refresh(tenant_id)

    async def refresh(self, tenant_id: str) -> CorpusSnapshot:
        """Walk the tenant's folder subtree and swap in a new snapshot."""
        try:
            files = await asyncio.to_thread(self._list_documents, tenant_id)
        except BrokerError as exc:
            previous = self._snapshots.get(tenant_id)
            if previous is not None and previous.populated:
                logger.warning(
                    "Corpus refresh failed for tenant %s, serving previous snapshot "
                    "(%d ids): %s", tenant_id, len(previous), exc,
                )
                return previous
            logger.warning(
                "Corpus refresh failed for tenant %s and no snapshot exists: %s",
                tenant_id, exc,
            )
            return EMPTY_SNAPSHOT

        snapshot = CorpusSnapshot(
            ids=frozenset(files),
            modified=MappingProxyType(dict(files)),
            refreshed_at=self._clock(),
            populated=True,
        )
        self._snapshots[tenant_id] = snapshot
        logger.info("Refreshed corpus for tenant %s: %d documents", tenant_id, len(snapshot))
        return snapshot

    def invalidate(self, tenant_id: str | None = None) -> None:
        """
        Force a refresh on the next read for one tenant, or for all tenants.

        The stale snapshot is kept as the fallback for a failed refresh.
        """
        tenants = [tenant_id] if tenant_id is not None else list(self._snapshots)
        for tenant in tenants:
            current = self._snapshots.get(tenant)
            if current is not None:
                self._snapshots[tenant] = replace(current, refreshed_at=float("-inf"))

    def _list_documents(self, tenant_id: str) -> dict[str, float]:
        return {
            f.id: parse_iso_timestamp(f.modified_time)
            for f in walk_folder(self._store, tenant_id)
            if f.mime_type in self._mime_filter
        }


class LibraryListCache:
    """
    Time-bounded cache of the tenant folders under the root folder.

    Unlike membership, a failed listing is not masked: there is no safe
    default for "which tenants exist", so the DocumentStoreError propagates.
    """

    def __init__(
        self,
        store: DocumentStore,
        root_folder_id: str,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._root = root_folder_id
        self._ttl = ttl_seconds
        self._clock = clock
        self._folders: tuple[DocumentFile, ...] | None = None
        self._fetched_at = 0.0

    async def get(self) -> tuple[DocumentFile, ...]:
        if self._folders is not None and self._clock() - self._fetched_at < self._ttl:
            return self._folders
        if not self._root:
            raise ConfigurationError("DRIVE_ROOT_FOLDER_ID is not configured")

        folders = await asyncio.to_thread(list_tenant_folders, self._store, self._root)
        self._folders = tuple(folders)
        self._fetched_at = self._clock()
        logger.info("Listed %d tenant libraries", len(self._folders))
        return self._folders

    def invalidate(self) -> None:
        self._folders = None
