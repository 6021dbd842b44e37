# =============================================================================
# Unit Tests - Shared Token Auth
# =============================================================================
#
# Test groups:
#   1. require_token called directly (no app)
#   2. The dependency wired into a router, through TestClient
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from mr_broker.api.deps import get_library_cache, require_token
from mr_broker.config import settings
from mr_broker.main import app
from mr_broker.services.document_store import DocumentFile, FOLDER_MIME


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.fixture
def auth_on():
    with patch.object(settings, "auth_enabled", True), \
            patch.object(settings, "auth_token", "s3cret"):
        yield


# ---------------------------------------------------------------------------
# 1. require_token
# ---------------------------------------------------------------------------


class TestRequireToken:
    def test_disabled_allows_anonymous(self):
        with patch.object(settings, "auth_enabled", False):
            assert _run(require_token(None, None)) is None

    def test_bearer_token_accepted(self, auth_on):
        assert _run(require_token(_bearer("s3cret"), None)) is None

    def test_header_token_accepted(self, auth_on):
        assert _run(require_token(None, "s3cret")) is None

    def test_missing_token(self, auth_on):
        with pytest.raises(HTTPException) as exc_info:
            _run(require_token(None, None))
        assert exc_info.value.status_code == 401
        assert "Missing" in exc_info.value.detail

    def test_wrong_token(self, auth_on):
        with pytest.raises(HTTPException) as exc_info:
            _run(require_token(_bearer("guess"), None))
        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    def test_unconfigured_token_rejects_everything(self):
        with patch.object(settings, "auth_enabled", True), \
                patch.object(settings, "auth_token", ""):
            with pytest.raises(HTTPException):
                _run(require_token(None, ""))
            with pytest.raises(HTTPException):
                _run(require_token(_bearer("anything"), None))


# ---------------------------------------------------------------------------
# 2. Through the app
# ---------------------------------------------------------------------------


class _StaticLibraries:
    async def get(self):
        return (DocumentFile(id="acme", name="Acme", mime_type=FOLDER_MIME),)

    def invalidate(self) -> None:
        pass


class TestAuthOnRoutes:
    @pytest.fixture
    def client(self):
        app.dependency_overrides[get_library_cache] = _StaticLibraries
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_health_is_public(self, client, auth_on):
        assert client.get("/health").status_code == 200

    def test_protected_route_needs_token(self, client, auth_on):
        response = client.get("/libraries")
        assert response.status_code == 401

    def test_bearer_header(self, client, auth_on):
        response = client.get("/libraries", headers={"Authorization": "Bearer s3cret"})
        assert response.status_code == 200
        assert response.json() == {"libraries": [{"id": "acme", "name": "Acme"}]}

    def test_x_auth_token_header(self, client, auth_on):
        response = client.get("/libraries", headers={"X-Auth-Token": "s3cret"})
        assert response.status_code == 200
