# =============================================================================
# API Dependencies - Auth and Shared Collaborators
# =============================================================================
#
# 1. require_token()      - shared-token auth, toggled by settings.auth_enabled
# 2. get_corpus_cache()   - process-wide membership cache (one per API process)
# 3. get_library_cache()  - process-wide cache of the tenant folder listing
# 4. get_index()          - configured vector index
#
# FastAPI dependencies (not middleware), so each router opts in via
# Depends(...) and tests swap them through app.dependency_overrides.
#
# HTTPBearer(auto_error=False) so that missing headers are handled here:
# the token may also arrive as X-Auth-Token.
# =============================================================================

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mr_broker.config import settings
from mr_broker.services.corpus_cache import CorpusMembershipCache, LibraryListCache
from mr_broker.services.document_store import get_document_store
from mr_broker.services.vectorstore import VectorIndex, get_vector_index

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI docs (shows "Authorize" button in Swagger UI)
_bearer_scheme = HTTPBearer(auto_error=False)


async def require_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    x_auth_token: str | None = Header(default=None),
) -> None:
    """
    Validate the shared API token.

    When auth_enabled=False: no-op (anonymous access).
    When auth_enabled=True: accepts `Authorization: Bearer <token>` or
    `X-Auth-Token: <token>`.

    Raises:
        HTTPException 401: Missing or invalid token.
    """
    if not settings.auth_enabled:
        return

    supplied = credentials.credentials if credentials is not None else x_auth_token
    if not supplied:
        raise HTTPException(
            status_code=401,
            detail="Missing API token. Provide 'Authorization: Bearer <token>' "
            "or 'X-Auth-Token' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not settings.auth_token or not secrets.compare_digest(supplied, settings.auth_token):
        logger.warning("Rejected request with an invalid API token")
        raise HTTPException(
            status_code=401,
            detail="Invalid API token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ---------------------------------------------------------------------------
# Shared caches (lazy singletons)
# ---------------------------------------------------------------------------

_corpus_cache: CorpusMembershipCache | None = None
_library_cache: LibraryListCache | None = None


def get_corpus_cache() -> CorpusMembershipCache:
    global _corpus_cache
    if _corpus_cache is None:
        _corpus_cache = CorpusMembershipCache(
            get_document_store(), ttl_seconds=settings.corpus_cache_ttl_seconds
        )
    return _corpus_cache


def get_library_cache() -> LibraryListCache:
    global _library_cache
    if _library_cache is None:
        _library_cache = LibraryListCache(
            get_document_store(),
            settings.drive_root_folder_id,
            ttl_seconds=settings.corpus_cache_ttl_seconds,
        )
    return _library_cache


def get_index() -> VectorIndex:
    return get_vector_index()
