# =============================================================================
# Document Store - Google Drive / Slides / Sheets (Pluggable Port)
# =============================================================================
#
# The document store owns every tenant's source files. A tenant is a folder
# directly under the configured root folder; its documents live anywhere in
# that folder's subtree.
#
# Two layers, the same shape as the vector store module:
#   1. DocumentStore Protocol - what the extractor and the membership cache
#      need (list a folder, read bytes, export text, read slides/sheets)
#   2. GoogleDriveStore - the production implementation on the Google
#      API client, authenticated as a service account
#
# Every method is synchronous. Async callers (the membership cache, the
# library routes) wrap them in asyncio.to_thread().
#
# THREAD SAFETY:
# googleapiclient service objects sit on an httplib2.Http, which is not
# thread-safe. Ingestion runs documents on a thread pool, so each thread
# builds its own services (threading.local).
# =============================================================================

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mr_broker.config import settings
from mr_broker.errors import ConfigurationError, DocumentStoreError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Mime Types
# ---------------------------------------------------------------------------

FOLDER_MIME = "application/vnd.google-apps.folder"
GOOGLE_DOC_MIME = "application/vnd.google-apps.document"
GOOGLE_SLIDES_MIME = "application/vnd.google-apps.presentation"
GOOGLE_SHEET_MIME = "application/vnd.google-apps.spreadsheet"
PDF_MIME = "application/pdf"

# Types the extractor can turn into text. The membership cache uses the
# same set, so an unsupported file never counts as "present".
SUPPORTED_MIME_TYPES: frozenset[str] = frozenset({
    GOOGLE_DOC_MIME,
    GOOGLE_SLIDES_MIME,
    GOOGLE_SHEET_MIME,
    PDF_MIME,
})

SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/presentations.readonly",
    "https://www.googleapis.com/auth/spreadsheets.readonly",
]

_FILE_FIELDS = "id, name, mimeType, modifiedTime, webViewLink"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentFile:
    """A file or folder as listed by the document store."""

    id: str
    name: str
    mime_type: str
    modified_time: str | None = None  # ISO-8601, as returned by Drive
    web_view_link: str = ""

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> DocumentFile:
        return cls(
            id=item["id"],
            name=item.get("name", ""),
            mime_type=item.get("mimeType", ""),
            modified_time=item.get("modifiedTime"),
            web_view_link=item.get("webViewLink", ""),
        )


# ---------------------------------------------------------------------------
# DocumentStore Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class DocumentStore(Protocol):
    """Read-only access to tenant folders and their documents."""

    def list_children(self, folder_id: str) -> list[DocumentFile]:
        """Every non-trashed file and folder directly under `folder_id`."""
        ...

    def get_content(self, file_id: str) -> bytes:
        """Raw bytes of a binary file (e.g. a PDF)."""
        ...

    def export_as_text(self, file_id: str) -> str:
        """Plain-text export of a native text document."""
        ...

    def get_presentation(self, file_id: str) -> dict[str, Any]:
        """The full presentation resource of a slide deck."""
        ...

    def get_sheet_values(
        self, file_id: str, max_sheets: int, cell_range: str
    ) -> list[list[list[str]]]:
        """Cell values of the first `max_sheets` sheets, one row list per sheet."""
        ...


# ---------------------------------------------------------------------------
# Folder Walking
# ---------------------------------------------------------------------------


def walk_folder(store: DocumentStore, folder_id: str) -> Iterator[DocumentFile]:
    """
    Yield every non-folder file in the subtree under `folder_id`.

    Depth-first with an explicit stack, so arbitrarily deep trees never hit
    the recursion limit. A folder reachable twice (Drive allows multiple
    parents) is listed once.
    """
    stack = [folder_id]
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        for item in store.list_children(current):
            if item.is_folder:
                stack.append(item.id)
            else:
                yield item


def list_tenant_folders(store: DocumentStore, root_folder_id: str) -> list[DocumentFile]:
    """Tenant libraries: the folders directly under the root, sorted by name."""
    folders = [f for f in store.list_children(root_folder_id) if f.is_folder]
    return sorted(folders, key=lambda f: f.name.lower())


# ---------------------------------------------------------------------------
# Google Drive Implementation
# ---------------------------------------------------------------------------


def load_service_account_credentials(
    credentials_path: str | None = None,
    credentials_json: str | None = None,
) -> service_account.Credentials:
    """
    Resolve service-account credentials.

    Priority: explicit key-file path, then GOOGLE_CREDENTIALS_JSON holding
    inline JSON, then GOOGLE_CREDENTIALS_JSON holding a path.

    Raises:
        ConfigurationError: If nothing is configured or the key is unreadable.
    """
    if credentials_path:
        return _credentials_from_file(credentials_path)

    if not credentials_json:
        raise ConfigurationError(
            "Google credentials not configured. Set GOOGLE_APPLICATION_CREDENTIALS "
            "(path) or GOOGLE_CREDENTIALS_JSON (path or inline JSON)."
        )

    if credentials_json.strip().startswith("{"):
        try:
            info = json.loads(credentials_json)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                "GOOGLE_CREDENTIALS_JSON looks like JSON but could not be parsed"
            ) from exc
        return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)

    return _credentials_from_file(credentials_json)


def _credentials_from_file(path: str) -> service_account.Credentials:
    absolute = os.path.abspath(path)
    if not os.path.exists(absolute):
        raise ConfigurationError(f"Service account JSON not found at {absolute}")
    return service_account.Credentials.from_service_account_file(absolute, scopes=SCOPES)


class GoogleDriveStore:
    """
    DocumentStore backed by the Drive v3, Slides v1 and Sheets v4 APIs.

    Listings page through `nextPageToken`, include shared-drive items and
    exclude trashed files. HTTP, socket and credential-refresh errors are
    raised as DocumentStoreError.
    """

    def __init__(
        self,
        credentials: service_account.Credentials,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._credentials = credentials
        self._timeout = timeout_seconds
        self._local = threading.local()

    def _service(self, name: str, version: str) -> Any:
        services = getattr(self._local, "services", None)
        if services is None:
            services = self._local.services = {}
        key = f"{name}:{version}"
        if key not in services:
            http = google_auth_httplib2.AuthorizedHttp(
                self._credentials, http=httplib2.Http(timeout=self._timeout)
            )
            services[key] = build(name, version, http=http, cache_discovery=False)
        return services[key]

    def _execute(self, request: Any, what: str) -> Any:
        try:
            return request.execute()
        except HttpError as exc:
            raise DocumentStoreError(f"{what} failed: {exc}") from exc
        except (TimeoutError, OSError, httplib2.HttpLib2Error) as exc:
            raise DocumentStoreError(f"{what} failed: {exc!r}") from exc
        except GoogleAuthError as exc:
            # Token refresh happens inside execute()
            raise DocumentStoreError(f"{what} failed: credentials: {exc}") from exc

    # -- DocumentStore ------------------------------------------------------

    def list_children(self, folder_id: str) -> list[DocumentFile]:
        drive = self._service("drive", "v3")
        files: list[DocumentFile] = []
        page_token: str | None = None
        while True:
            response = self._execute(
                drive.files().list(
                    q=f"'{folder_id}' in parents and trashed = false",
                    fields=f"nextPageToken, files({_FILE_FIELDS})",
                    pageSize=1000,
                    pageToken=page_token,
                    includeItemsFromAllDrives=True,
                    supportsAllDrives=True,
                ),
                f"list folder {folder_id}",
            )
            files.extend(DocumentFile.from_api(item) for item in response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Listed %d children of folder %s", len(files), folder_id)
        return files

    def get_content(self, file_id: str) -> bytes:
        drive = self._service("drive", "v3")
        return self._execute(
            drive.files().get_media(fileId=file_id, supportsAllDrives=True),
            f"download {file_id}",
        )

    def export_as_text(self, file_id: str) -> str:
        drive = self._service("drive", "v3")
        data = self._execute(
            drive.files().export(fileId=file_id, mimeType="text/plain"),
            f"export {file_id}",
        )
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data

    def get_presentation(self, file_id: str) -> dict[str, Any]:
        slides = self._service("slides", "v1")
        return self._execute(
            slides.presentations().get(presentationId=file_id),
            f"read presentation {file_id}",
        )

    def get_sheet_values(
        self, file_id: str, max_sheets: int, cell_range: str
    ) -> list[list[list[str]]]:
        sheets = self._service("sheets", "v4")
        spreadsheet = self._execute(
            sheets.spreadsheets().get(spreadsheetId=file_id, fields="sheets.properties.title"),
            f"read spreadsheet {file_id}",
        )
        titles = [
            sheet["properties"]["title"]
            for sheet in spreadsheet.get("sheets", [])[:max_sheets]
        ]
        if not titles:
            return []

        ranges = [f"'{title}'!{cell_range}" for title in titles]
        response = self._execute(
            sheets.spreadsheets().values().batchGet(spreadsheetId=file_id, ranges=ranges),
            f"read values of {file_id}",
        )
        return [
            [[str(cell) for cell in row] for row in value_range.get("values", [])]
            for value_range in response.get("valueRanges", [])
        ]


# ---------------------------------------------------------------------------
# Factory - Lazy Singleton
# ---------------------------------------------------------------------------

_store: DocumentStore | None = None


def get_document_store() -> DocumentStore:
    """
    Build the document store from settings on first use.

    Raises:
        ConfigurationError: If credentials are missing or unreadable.
    """
    global _store
    if _store is None:
        credentials = load_service_account_credentials(
            settings.google_application_credentials,
            settings.google_credentials_json,
        )
        _store = GoogleDriveStore(credentials, timeout_seconds=settings.drive_timeout_seconds)
        logger.info("Initialized Google Drive document store")
    return _store
