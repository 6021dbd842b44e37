# =============================================================================
# API Request Models - Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (rendered as a 400 validation_error)
# 2. OpenAPI documentation generation (visible at /docs)
# 3. Type hints for IDE autocompletion in route handlers
#
# Wire format is camelCase (tenantId, userQuery, topK); Python attributes
# are snake_case. populate_by_name lets tests build models either way.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchRequest(CamelModel):
    """
    Request body for POST /search - ask a question of one tenant's library.

    Example:
        {
            "tenantId": "1AbCdEfGh",
            "userQuery": "What drove awareness in the latest brand tracker?",
            "structured": true
        }
    """

    # Tenant id is the tenant's folder id under the Drive root
    tenant_id: str = Field(
        ...,
        min_length=1,
        description="Tenant whose library is searched",
        examples=["1AbCdEfGh"],
    )

    user_query: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="The question to answer from the tenant's reports",
        examples=["What drove awareness in the latest brand tracker?"],
    )

    top_k: int | None = Field(
        default=None,
        ge=1,
        le=50,
        description="Nearest index entries to consider (default from config)",
    )

    structured: bool = Field(
        default=False,
        description=(
            "Return a structured answer (headline, supporting bullets, quotes) "
            "instead of free text"
        ),
    )


class IngestRequest(CamelModel):
    """Request body for POST /ingest - (re)index one tenant's library."""

    tenant_id: str = Field(
        ...,
        min_length=1,
        description="Tenant whose folder is ingested",
        examples=["1AbCdEfGh"],
    )
