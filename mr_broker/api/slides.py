# =============================================================================
# Slides API - Rendered Page Images
# =============================================================================
#
# GET /slides/{file_id}/{page} proxies the rasterization service so the UI
# only ever talks to this API (and its auth). 204 when nothing can be
# rendered.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Response

from mr_broker.api.deps import require_token
from mr_broker.models.responses import ErrorResponse
from mr_broker.services.slides import SlideRenderer, get_slide_renderer

router = APIRouter(tags=["Slides"], dependencies=[Depends(require_token)])


@router.get(
    "/slides/{file_id}/{page}",
    summary="Rendered image of one document page",
    response_class=Response,
    responses={
        200: {"content": {"image/png": {}}},
        204: {"description": "The page could not be rendered"},
        502: {"model": ErrorResponse, "description": "Rendering service failure"},
    },
)
async def get_slide(
    file_id: str,
    page: int = Path(ge=1),
    renderer: SlideRenderer = Depends(get_slide_renderer),
) -> Response:
    rendered = await renderer.render(file_id, page)
    if rendered is None:
        return Response(status_code=204)
    return Response(
        content=rendered.content,
        media_type=rendered.media_type,
        headers={"Cache-Control": "private, max-age=300"},
    )
