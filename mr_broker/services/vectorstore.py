# =============================================================================
# Vector Index Abstraction - Namespaced, Pluggable Backend Protocol
# =============================================================================
#
# Stores chunk embeddings per tenant namespace and answers nearest-neighbour
# queries inside one namespace. No operation ever reads across namespaces.
#
# Mixed sync/async interface:
# - writes (upsert, delete, prune) and admin reads are sync -> called from
#   ingestion worker threads, or via asyncio.to_thread() from routes
# - query() is async -> called on the FastAPI request path
#
# ARCHITECTURE:
#   VectorIndex (Protocol)
#   ├── ChromaVectorIndex - ChromaDB, one collection per namespace
#   │   └── query() wraps the sync client in asyncio.to_thread()
#   └── PgVectorIndex     - PostgreSQL + pgvector, namespace column
#       ├── writes via the sync session (psycopg2)
#       └── query() via the async session (asyncpg)
#
# Similarity is cosine in both backends: score = 1 - cosine distance.
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import chromadb
from sqlalchemy import delete, distinct, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from mr_broker.config import settings
from mr_broker.errors import VectorIndexError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Entry Ids
# ---------------------------------------------------------------------------


def _short_hash(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:16]


def entry_id(tenant_id: str, document_name: str, chunk_index: int) -> str:
    """
    Deterministic id of one chunk: hash(tenant):hash(document_name):index.

    Same tenant, same document name and same position always give the same
    id, so re-ingesting overwrites instead of appending.
    """
    return f"{_short_hash(tenant_id)}:{_short_hash(document_name)}:{chunk_index}"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class VectorEntry:
    """One chunk to write: id, vector, text and its denormalized metadata."""

    id: str
    vector: list[float]
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    """A query-time projection of an entry plus its similarity. Never stored."""

    id: str
    score: float  # cosine similarity, higher = more relevant
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def file_id(self) -> str:
        return str(self.metadata.get("file_id", ""))


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorIndex(Protocol):
    """
    Namespaced vector index. Entry metadata must carry `file_id`,
    `document_name` and `chunk_index`; backends filter on them.
    """

    def upsert(self, namespace: str, entries: Sequence[VectorEntry]) -> int:
        """Insert or overwrite entries by id. Returns the number written."""
        ...

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        file_ids: Collection[str] | None = None,
    ) -> list[VectorMatch]:
        """
        Nearest entries by cosine similarity, highest first.

        `file_ids=None` means unrestricted; an empty collection matches nothing.
        """
        ...

    def delete(self, namespace: str, ids: Sequence[str]) -> int:
        ...

    def prune_document(self, namespace: str, document_name: str, from_chunk: int) -> int:
        """Delete a document's entries with chunk_index >= from_chunk."""
        ...

    def prune_renamed(self, namespace: str, file_id: str, document_name: str) -> int:
        """Delete a file's entries written under any name other than `document_name`."""
        ...

    def delete_file_ids(self, namespace: str, file_ids: Collection[str]) -> int:
        ...

    def list_file_ids(self, namespace: str) -> set[str]:
        ...

    def describe_stats(self) -> dict[str, int]:
        """Entry count per namespace."""
        ...

    def delete_namespace(self, namespace: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorIndex:
    """
    ChromaDB-backed vector index with one collection per namespace.

    Collection names are restricted to [a-zA-Z0-9._-], so each namespace
    maps to `ns-<sha1>`; the raw namespace is kept in collection metadata
    for describe_stats().

    ChromaDB supports both in-process and client/server modes:
    - In-process (default): no extra infra, data held in memory
    - Client/server: set CHROMA_URL for a Docker deployment
    """

    def __init__(self, client: Any | None = None) -> None:
        if client is not None:
            self._client = client
        elif settings.chroma_url:
            self._client = chromadb.HttpClient(host=settings.chroma_url)
        else:
            self._client = chromadb.Client()

    @staticmethod
    def collection_name(namespace: str) -> str:
        return "ns-" + hashlib.sha1(namespace.encode("utf-8")).hexdigest()

    def _collection(self, namespace: str) -> Any:
        return self._client.get_or_create_collection(
            name=self.collection_name(namespace),
            metadata={"hnsw:space": "cosine", "namespace": namespace},
        )

    def upsert(self, namespace: str, entries: Sequence[VectorEntry]) -> int:
        if not entries:
            return 0
        try:
            self._collection(namespace).upsert(
                ids=[e.id for e in entries],
                embeddings=[e.vector for e in entries],
                documents=[e.text for e in entries],
                metadatas=[_sanitise_chroma_metadata(e.metadata) for e in entries],
            )
        except Exception as exc:
            raise VectorIndexError(f"Chroma upsert into '{namespace}' failed: {exc}") from exc

        logger.debug("Upserted %d entries into namespace %s (chroma)", len(entries), namespace)
        return len(entries)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        file_ids: Collection[str] | None = None,
    ) -> list[VectorMatch]:
        if file_ids is not None and not file_ids:
            return []

        def _sync_query() -> list[VectorMatch]:
            collection = self._collection(namespace)
            if collection.count() == 0:
                return []

            where = {"file_id": {"$in": sorted(file_ids)}} if file_ids is not None else None
            results = collection.query(
                query_embeddings=[vector],
                n_results=top_k,
                where=where,
                include=["documents", "metadatas", "distances"],
            )

            matches: list[VectorMatch] = []
            if results and results["ids"] and results["ids"][0]:
                for i, chroma_id in enumerate(results["ids"][0]):
                    distance = results["distances"][0][i] if results["distances"] else 0.0
                    matches.append(VectorMatch(
                        id=chroma_id,
                        score=round(1.0 - distance, 4),
                        text=results["documents"][0][i] if results["documents"] else "",
                        metadata=dict(results["metadatas"][0][i] or {})
                        if results["metadatas"] else {},
                    ))
            return matches

        try:
            return await asyncio.to_thread(_sync_query)
        except Exception as exc:
            raise VectorIndexError(f"Chroma query on '{namespace}' failed: {exc}") from exc

    def delete(self, namespace: str, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        self._run(lambda: self._collection(namespace).delete(ids=list(ids)), "delete", namespace)
        return len(ids)

    def prune_document(self, namespace: str, document_name: str, from_chunk: int) -> int:
        where = {"$and": [
            {"document_name": document_name},
            {"chunk_index": {"$gte": from_chunk}},
        ]}
        return self._delete_where(namespace, where)

    def prune_renamed(self, namespace: str, file_id: str, document_name: str) -> int:
        where = {"$and": [
            {"file_id": file_id},
            {"document_name": {"$ne": document_name}},
        ]}
        return self._delete_where(namespace, where)

    def delete_file_ids(self, namespace: str, file_ids: Collection[str]) -> int:
        if not file_ids:
            return 0
        return self._delete_where(namespace, {"file_id": {"$in": sorted(file_ids)}})

    def list_file_ids(self, namespace: str) -> set[str]:
        result = self._run(
            lambda: self._collection(namespace).get(include=["metadatas"]),
            "list", namespace,
        )
        return {str(m["file_id"]) for m in result["metadatas"] or [] if m and m.get("file_id")}

    def describe_stats(self) -> dict[str, int]:
        stats: dict[str, int] = {}
        try:
            for collection in self._client.list_collections():
                namespace = (collection.metadata or {}).get("namespace")
                if namespace:
                    stats[namespace] = collection.count()
        except Exception as exc:
            raise VectorIndexError(f"Chroma stats failed: {exc}") from exc
        return stats

    def delete_namespace(self, namespace: str) -> None:
        name = self.collection_name(namespace)
        existing = self._run(
            lambda: [c.name for c in self._client.list_collections()], "list", namespace
        )
        if name in existing:
            self._run(lambda: self._client.delete_collection(name), "purge", namespace)
            logger.info("Deleted namespace %s (chroma)", namespace)

    def _delete_where(self, namespace: str, where: dict) -> int:
        def _sync_delete() -> int:
            collection = self._collection(namespace)
            ids = collection.get(where=where, include=[])["ids"]
            if ids:
                collection.delete(ids=ids)
            return len(ids)

        return self._run(_sync_delete, "delete", namespace)

    @staticmethod
    def _run(operation, what: str, namespace: str):
        try:
            return operation()
        except Exception as exc:
            raise VectorIndexError(f"Chroma {what} on '{namespace}' failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Implementation 2: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorIndex:
    """
    pgvector-backed vector index: one table, partitioned by `namespace`.

    Writes use the sync engine (ingestion threads), queries the async engine
    (FastAPI), matching each caller's execution model.
    """

    def __init__(self, create_tables: bool = True) -> None:
        if create_tables:
            from mr_broker.db.engine import create_schema

            try:
                create_schema()
            except (SQLAlchemyError, OSError) as exc:
                raise VectorIndexError(f"pgvector schema setup failed: {exc}") from exc

    def upsert(self, namespace: str, entries: Sequence[VectorEntry]) -> int:
        from mr_broker.db.engine import get_sync_session
        from mr_broker.db.models import IndexEntryRow

        if not entries:
            return 0

        stmt = pg_insert(IndexEntryRow.__table__).values([
            {
                "id": e.id,
                "namespace": namespace,
                "file_id": str(e.metadata.get("file_id", "")),
                "document_name": str(e.metadata.get("document_name", "")),
                "chunk_index": int(e.metadata.get("chunk_index", 0)),
                "content": e.text,
                "embedding": e.vector,
                "metadata": e.metadata,
            }
            for e in entries
        ])
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "namespace": stmt.excluded.namespace,
                "file_id": stmt.excluded.file_id,
                "document_name": stmt.excluded.document_name,
                "chunk_index": stmt.excluded.chunk_index,
                "content": stmt.excluded.content,
                "embedding": stmt.excluded.embedding,
                "metadata": stmt.excluded["metadata"],
                "updated_at": func.now(),
            },
        )

        try:
            with get_sync_session() as session:
                session.execute(stmt)
        except (SQLAlchemyError, OSError) as exc:
            raise VectorIndexError(f"pgvector upsert into '{namespace}' failed: {exc}") from exc

        logger.debug("Upserted %d entries into namespace %s (pgvector)", len(entries), namespace)
        return len(entries)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        file_ids: Collection[str] | None = None,
    ) -> list[VectorMatch]:
        from mr_broker.db.engine import get_async_session
        from mr_broker.db.models import IndexEntryRow

        if file_ids is not None and not file_ids:
            return []

        distance = IndexEntryRow.embedding.cosine_distance(vector)
        stmt = (
            select(IndexEntryRow, distance.label("distance"))
            .where(IndexEntryRow.namespace == namespace)
            .order_by(distance)
            .limit(top_k)
        )
        if file_ids is not None:
            stmt = stmt.where(IndexEntryRow.file_id.in_(list(file_ids)))

        try:
            async with get_async_session() as session:
                rows = (await session.execute(stmt)).all()
        except (SQLAlchemyError, OSError) as exc:
            raise VectorIndexError(f"pgvector query on '{namespace}' failed: {exc}") from exc

        return [
            VectorMatch(
                id=row.id,
                score=round(1.0 - dist, 4),
                text=row.content,
                metadata=dict(row.metadata_ or {}),
            )
            for row, dist in rows
        ]

    def delete(self, namespace: str, ids: Sequence[str]) -> int:
        from mr_broker.db.models import IndexEntryRow

        if not ids:
            return 0
        return self._execute_delete(
            namespace,
            IndexEntryRow.namespace == namespace,
            IndexEntryRow.id.in_(list(ids)),
        )

    def prune_document(self, namespace: str, document_name: str, from_chunk: int) -> int:
        from mr_broker.db.models import IndexEntryRow

        return self._execute_delete(
            namespace,
            IndexEntryRow.namespace == namespace,
            IndexEntryRow.document_name == document_name,
            IndexEntryRow.chunk_index >= from_chunk,
        )

    def prune_renamed(self, namespace: str, file_id: str, document_name: str) -> int:
        from mr_broker.db.models import IndexEntryRow

        return self._execute_delete(
            namespace,
            IndexEntryRow.namespace == namespace,
            IndexEntryRow.file_id == file_id,
            IndexEntryRow.document_name != document_name,
        )

    def delete_file_ids(self, namespace: str, file_ids: Collection[str]) -> int:
        from mr_broker.db.models import IndexEntryRow

        if not file_ids:
            return 0
        return self._execute_delete(
            namespace,
            IndexEntryRow.namespace == namespace,
            IndexEntryRow.file_id.in_(list(file_ids)),
        )

    def list_file_ids(self, namespace: str) -> set[str]:
        from mr_broker.db.engine import get_sync_session
        from mr_broker.db.models import IndexEntryRow

        stmt = select(distinct(IndexEntryRow.file_id)).where(IndexEntryRow.namespace == namespace)
        try:
            with get_sync_session() as session:
                return set(session.execute(stmt).scalars().all())
        except (SQLAlchemyError, OSError) as exc:
            raise VectorIndexError(f"pgvector list on '{namespace}' failed: {exc}") from exc

    def describe_stats(self) -> dict[str, int]:
        from mr_broker.db.engine import get_sync_session
        from mr_broker.db.models import IndexEntryRow

        stmt = select(IndexEntryRow.namespace, func.count()).group_by(IndexEntryRow.namespace)
        try:
            with get_sync_session() as session:
                return {namespace: count for namespace, count in session.execute(stmt).all()}
        except (SQLAlchemyError, OSError) as exc:
            raise VectorIndexError(f"pgvector stats failed: {exc}") from exc

    def delete_namespace(self, namespace: str) -> None:
        from mr_broker.db.models import IndexEntryRow

        removed = self._execute_delete(namespace, IndexEntryRow.namespace == namespace)
        logger.info("Deleted namespace %s (pgvector, %d entries)", namespace, removed)

    @staticmethod
    def _execute_delete(namespace: str, *conditions) -> int:
        from mr_broker.db.engine import get_sync_session
        from mr_broker.db.models import IndexEntryRow

        try:
            with get_sync_session() as session:
                result = session.execute(delete(IndexEntryRow).where(*conditions))
                return result.rowcount or 0
        except (SQLAlchemyError, OSError) as exc:
            raise VectorIndexError(f"pgvector delete on '{namespace}' failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Factory - Lazy Singleton
# ---------------------------------------------------------------------------

_index: VectorIndex | None = None


def get_vector_index(override_type: str | None = None) -> VectorIndex:
    """
    Return the configured vector index backend.

    Reads `vectorstore_type` from settings:
    - "chroma" -> ChromaVectorIndex (default, no extra infra)
    - "pgvector" -> PgVectorIndex

    The instance is cached; an `override_type` always builds a fresh one.
    """
    global _index
    if override_type is None and _index is not None:
        return _index

    store_type = override_type or settings.vectorstore_type
    if store_type == "pgvector":
        logger.info("Using pgvector vector index")
        index: VectorIndex = PgVectorIndex()
    else:
        logger.info("Using ChromaDB vector index")
        index = ChromaVectorIndex()

    if override_type is None:
        _index = index
    return index


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    ChromaDB metadata values must be str, int, float or bool:
    - list -> comma-separated string
    - None -> empty string
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
