# =============================================================================
# Error Kinds - Typed Failures Shared Across the Pipelines
# =============================================================================
#
# Every error carries a machine-readable `kind` and a human-readable
# `detail`. The API layer renders both, so callers can tell "no results"
# (a normal, empty response) apart from "service unavailable" (an error).
#
#   BrokerError
#   ├── ExtractionError            - document unsupported / undecodable
#   ├── EmbeddingServiceError      - embeddings API failed or timed out
#   ├── VectorIndexError           - vector index write/read failed
#   │   └── RetrievalError         - vector search failed during a query
#   ├── GenerationServiceError     - LLM call failed or timed out
#   ├── DocumentStoreError         - Drive listing / download failed
#   ├── ValidationError            - missing or invalid request field
#   ├── StalenessFilterEmptyError  - authoritative corpus set is empty
#   ├── ConfigurationError         - required setting missing or invalid
#   └── RenderServiceError         - page rasterization service failed
# =============================================================================

from __future__ import annotations


class BrokerError(Exception):
    """Base class for all errors raised by the broker core."""

    kind = "broker_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "detail": self.detail}


class ExtractionError(BrokerError):
    """A document could not be turned into text. Skip-and-report in batches."""

    kind = "extraction_error"


class EmbeddingServiceError(BrokerError):
    kind = "embedding_service_error"


class VectorIndexError(BrokerError):
    kind = "vector_index_error"


class RetrievalError(VectorIndexError):
    kind = "retrieval_error"


class GenerationServiceError(BrokerError):
    kind = "generation_service_error"


class DocumentStoreError(BrokerError):
    kind = "document_store_error"


class ValidationError(BrokerError):
    """Caller error: a required request field is missing or invalid."""

    kind = "validation_error"


class StalenessFilterEmptyError(BrokerError):
    """
    The authoritative document set for a tenant is empty while the
    staleness filter is on. Handled inside the retriever as "deny all".
    """

    kind = "staleness_filter_empty"


class ConfigurationError(BrokerError):
    """A required setting (credentials, folder id, API key) is missing."""

    kind = "configuration_error"


class RenderServiceError(BrokerError):
    """The page rasterization service failed or timed out."""

    kind = "render_service_error"
