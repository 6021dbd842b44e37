# =============================================================================
# Slide Renderer Client - Page Images from the Rasterization Service
# =============================================================================
#
# Page rendering is delegated to an external service:
#   GET {slide_service_url}/secure-slide/{file_id}/{page} -> image/png
#
# The service answers 204 when it cannot render (no renderer installed,
# page out of range); that is passed through as "no image", not an error.
# Any other failure surfaces as RenderServiceError.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from mr_broker.config import settings
from mr_broker.errors import RenderServiceError

logger = logging.getLogger(__name__)


@dataclass
class RenderedPage:
    content: bytes
    media_type: str = "image/png"


def slide_path(file_id: str, page: int) -> str:
    """Path of the page image on this API (see api/slides.py)."""
    return f"/slides/{quote(file_id, safe='')}/{page}"


class SlideRenderer:
    """
    Async HTTP client for the rasterization service.

    One httpx.AsyncClient is shared across requests; call close() on shutdown.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self._base_url = (base_url or settings.slide_service_url).rstrip("/")
        self._timeout = timeout or settings.slide_service_timeout_seconds
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def render(self, file_id: str, page: int) -> RenderedPage | None:
        """
        Fetch one rendered page.

        Returns:
            The image, or None when the service has nothing to render.

        Raises:
            RenderServiceError: The service failed, timed out or is unreachable.
        """
        path = f"/secure-slide/{quote(file_id, safe='')}/{page}"
        try:
            response = await self._get_client().get(path)
        except httpx.TimeoutException as exc:
            raise RenderServiceError(f"Rendering timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise RenderServiceError(f"Rendering service unreachable: {exc}") from exc

        if response.status_code == 204:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Rendering failed for %s page %d: HTTP %d", file_id, page, response.status_code
            )
            raise RenderServiceError(f"Rendering service returned HTTP {response.status_code}")

        return RenderedPage(
            content=response.content,
            media_type=response.headers.get("content-type", "image/png"),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_renderer: SlideRenderer | None = None


def get_slide_renderer() -> SlideRenderer:
    global _renderer
    if _renderer is None:
        _renderer = SlideRenderer()
    return _renderer
