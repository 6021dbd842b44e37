# =============================================================================
# API Response Models - Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# They serve as the contract between backend and frontend:
# 1. Ensure consistent response structure across all endpoints
# 2. Automatically serialized to JSON by FastAPI (camelCase aliases)
# 3. Generate OpenAPI response schemas (visible at /docs)
# 4. Keep internal fields (vectors, similarity, raw text) off the wire
# =============================================================================

from pydantic import Field

from mr_broker.agents.synthesizer import StructuredAnswer
from mr_broker.models.requests import CamelModel


class HealthResponse(CamelModel):
    """Response for GET /health - confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class ErrorBody(CamelModel):
    kind: str
    detail: str


class ErrorResponse(CamelModel):
    """Body of every non-2xx response: {"error": {"kind", "detail"}}."""

    error: ErrorBody


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class Reference(CamelModel):
    """
    One numbered source behind an answer. `ref` is the [n] marker used
    in the answer text.
    """

    ref: int = Field(description="Citation number used in the answer")
    file_id: str
    file_name: str = Field(description="Display name (version/date suffixes removed)")
    page: int = Field(description="1-based page or slide number")
    file_url: str = Field(default="", description="Link to the document in Drive")
    report_tag: str = Field(default="", description="Inferred report type, e.g. 'tracker'")


class Visual(CamelModel):
    """A rendered page image that backs a PDF reference."""

    file_id: str
    page: int
    image_url: str


class SearchResponse(CamelModel):
    """
    Response for POST /search.

    With no relevant sources the answer is empty and references are empty:
    "nothing found" is a 200, not an error.
    """

    answer: str = Field(default="", description="Free-text answer with [n] citations")
    structured: StructuredAnswer | None = Field(
        default=None,
        description="Structured answer (only when the request asked for one)",
    )
    references: list[Reference] = Field(default_factory=list)
    visuals: list[Visual] = Field(default_factory=list)
    model: str = Field(default="n/a", description="LLM model used for generation")


# ---------------------------------------------------------------------------
# Libraries
# ---------------------------------------------------------------------------


class Library(CamelModel):
    id: str = Field(description="Tenant id (its folder id)")
    name: str


class LibrariesResponse(CamelModel):
    """Response for GET /libraries - tenant folders under the Drive root."""

    libraries: list[Library]


class LibraryStatsResponse(CamelModel):
    """Response for GET /libraries/{tenantId}/stats."""

    tenant_id: str
    drive_count: int = Field(description="Supported documents currently in the folder")
    indexed_count: int = Field(description="Index entries in the tenant namespace")


class RefreshResponse(CamelModel):
    ok: bool = True


class DeleteIndexResponse(CamelModel):
    tenant_id: str
    deleted: bool = True


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class IngestResponse(CamelModel):
    """
    Response for POST /ingest - confirms the batch was queued.

    The library is NOT re-indexed yet; poll GET /ingest/{taskId}.
    """

    tenant_id: str
    task_id: str = Field(description="Celery task ID for tracking the batch")
    status: str = Field(default="processing")
    message: str = Field(default="Ingestion queued.")


class IngestStatusResponse(CamelModel):
    """Response for GET /ingest/{taskId}."""

    task_id: str
    status: str = Field(description="Task status: PENDING, STARTED, RETRY, SUCCESS, FAILURE")
    result: dict | None = Field(
        default=None,
        description="Batch summary and per-document outcomes (when status is SUCCESS)",
    )
    error: str | None = Field(
        default=None,
        description="Error message (when status is FAILURE)",
    )
