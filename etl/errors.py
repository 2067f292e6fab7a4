"""Error taxonomy for the ingestion pipeline.

Every error carries a ``kind`` tag and the ``component`` that raised it so the
batch report can record failures without inspecting exception shapes.

- ``ValidationError``: missing or blank natural-key fields. Never retried.
- ``ConflictError``: a concurrent writer won a create or an optimistic
  version check failed. Retried once via re-read where that makes sense.
- ``CollaboratorError``: document fetch, text analysis, embedding generation.
  Logged and treated as "no data from this step".
- ``TransactionError``: relational write failure inside a record's pipeline.
  The record's transaction rolls back and the record is marked failed.
- ``DanglingReferenceError``: a link or archive target does not exist.
- ``ConfigurationError``: store unreachable or misconfigured at startup. The
  only error ``store_batch`` lets escape.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    kind = "pipeline_error"

    def __init__(self, message: str, *, component: str | None = None) -> None:
        super().__init__(message)
        self.component = component

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(PipelineError):
    """Raised when a record or key fails validation."""

    kind = "validation_error"


class InvalidKeyError(ValidationError):
    """Raised when a natural key is blank after normalization."""

    kind = "invalid_key"


class ConflictError(PipelineError):
    """Raised when a concurrent writer invalidated this write."""

    kind = "conflict_error"


class CollaboratorError(PipelineError):
    """Raised when an external collaborator fails."""

    kind = "collaborator_error"


class DocumentFetchError(CollaboratorError):
    kind = "document_fetch_error"


class AnalysisError(CollaboratorError):
    kind = "analysis_error"


class EmbeddingError(CollaboratorError):
    kind = "embedding_error"


class ParseError(PipelineError):
    """Raised when document text extraction fails."""

    kind = "parse_error"


class TransactionError(PipelineError):
    """Raised when a relational write inside a record fails."""

    kind = "transaction_error"


class DanglingReferenceError(PipelineError):
    """Raised when a link or archive target does not exist."""

    kind = "dangling_reference"


class ConfigurationError(PipelineError):
    """Raised for configuration-level failures such as an unreachable store."""

    kind = "configuration_error"
