"""
Error types for the issue summary pipeline.

Precondition and synthesis errors are fatal to a run. ExtractionError is
recoverable: the coordinator records it and the batch continues.
"""

from typing import Optional


class IssueSummaryError(Exception):
    """Base class for every error the pipeline raises."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        """Structured error body for the synchronous boundary."""
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigError(IssueSummaryError):
    """Invalid or missing configuration."""


class PreconditionError(IssueSummaryError):
    """Nothing to summarize: unknown issue, unknown source, or no documents."""

    def __init__(self, message: str, status: int = 404, details: Optional[str] = None):
        super().__init__(message, details)
        self.status = status


class ExtractionError(IssueSummaryError):
    """A single document could not be extracted."""

    def __init__(self, document_id: str, cause: str):
        super().__init__(f"Extraction failed for {document_id}: {cause}")
        self.document_id = document_id
        self.cause = cause


class NoSuccessfulExtractionsError(IssueSummaryError):
    """Every document in the batch failed extraction."""


class SynthesisError(IssueSummaryError):
    """The synthesis call failed or came back empty."""


class LLMError(IssueSummaryError):
    """A model provider call failed."""


class QuotaExceededError(LLMError):
    """The provider rejected the call for rate/quota reasons."""


class PersistenceError(IssueSummaryError):
    """Saving or loading a stored summary failed."""
