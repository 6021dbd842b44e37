# =============================================================================
# Shared Test Fixtures - In-Memory Document Store, Fake Embeddings, Chroma
# =============================================================================
#
# Nothing here touches the network: Drive is an in-memory tree, embeddings
# are deterministic keyword vectors, and ChromaDB runs in-process.
# =============================================================================

from __future__ import annotations

import itertools
from typing import Any

import chromadb
import pytest

from mr_broker.errors import DocumentStoreError
from mr_broker.services.document_store import FOLDER_MIME, DocumentFile
from mr_broker.services.vectorstore import ChromaVectorIndex

# Keyword axes for fake embeddings; the last axis keeps vectors non-zero
KEYWORDS = ["awareness", "price", "segment", "tracker", "brand", "concept", "survey"]


def fake_embed_one(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) for word in KEYWORDS] + [1.0]


def fake_embed(texts) -> list[list[float]]:
    return [fake_embed_one(t) for t in texts]


class FakeDocumentStore:
    """
    In-memory DocumentStore: folders map to children, files to content.

    `fail_listing` makes every list_children() raise DocumentStoreError.
    """

    def __init__(self) -> None:
        self.children: dict[str, list[DocumentFile]] = {}
        self.texts: dict[str, str] = {}
        self.blobs: dict[str, bytes] = {}
        self.presentations: dict[str, dict[str, Any]] = {}
        self.sheets: dict[str, list[list[list[str]]]] = {}
        self.fail_listing = False
        self.list_calls = 0

    def add_folder(self, parent_id: str, folder_id: str, name: str = "") -> DocumentFile:
        folder = DocumentFile(id=folder_id, name=name or folder_id, mime_type=FOLDER_MIME)
        self.children.setdefault(parent_id, []).append(folder)
        self.children.setdefault(folder_id, [])
        return folder

    def add_file(
        self,
        parent_id: str,
        file_id: str,
        name: str,
        mime_type: str,
        modified_time: str | None = "2024-06-01T00:00:00Z",
    ) -> DocumentFile:
        file = DocumentFile(
            id=file_id,
            name=name,
            mime_type=mime_type,
            modified_time=modified_time,
            web_view_link=f"https://drive.example/{file_id}",
        )
        self.children.setdefault(parent_id, []).append(file)
        return file

    def remove(self, parent_id: str, file_id: str) -> None:
        self.children[parent_id] = [f for f in self.children[parent_id] if f.id != file_id]

    # --- DocumentStore protocol ---

    def list_children(self, folder_id: str) -> list[DocumentFile]:
        self.list_calls += 1
        if self.fail_listing:
            raise DocumentStoreError("listing failed")
        return list(self.children.get(folder_id, []))

    def get_content(self, file_id: str) -> bytes:
        return self.blobs[file_id]

    def export_as_text(self, file_id: str) -> str:
        return self.texts[file_id]

    def get_presentation(self, file_id: str) -> dict[str, Any]:
        return self.presentations[file_id]

    def get_sheet_values(self, file_id: str, max_sheets: int, cell_range: str):
        return self.sheets[file_id][:max_sheets]


_tenant_counter = itertools.count(1)


@pytest.fixture
def tenant_id() -> str:
    """A namespace unique to this test (the in-process Chroma is shared)."""
    return f"tenant-{next(_tenant_counter)}"


@pytest.fixture
def store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture(scope="session")
def chroma_client():
    return chromadb.EphemeralClient()


@pytest.fixture
def chroma_index(chroma_client) -> ChromaVectorIndex:
    return ChromaVectorIndex(client=chroma_client)


@pytest.fixture
def embed():
    """Deterministic batch embedder (keyword counts)."""
    return fake_embed


@pytest.fixture
def embed_one():
    """Deterministic query embedder matching `embed`."""
    return fake_embed_one
