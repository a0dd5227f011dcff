"""Error taxonomy for the study assistant.

Every error carries an HTTP status code and a user-facing message. The API
layer renders them as ``{"error": message}`` bodies.
"""

from typing import Any


class StudyError(Exception):
    """Base class for all expected study assistant errors."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        """Render the JSON error body."""
        return {"error": self.message}


class Unauthorized(StudyError):
    """Missing or invalid bearer credential."""

    status_code = 401
    default_message = "Unauthorized"


class ValidationError(StudyError):
    """Bad input shape, length or enum value."""

    status_code = 400
    default_message = "Invalid request"


class QuestionTooLong(ValidationError):
    """Question exceeds the configured character cap."""

    def __init__(self, max_chars: int) -> None:
        super().__init__(f"Question too long (max {max_chars} characters)")
        self.max_chars = max_chars


class SourceNotFound(StudyError):
    """Referenced storage object is missing."""

    status_code = 404
    default_message = "Uploaded file not found in storage. Please re-upload the file."


class FileTooLarge(StudyError):
    """Stored file exceeds the upload size cap."""

    status_code = 413

    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"File too large (max {max_bytes // (1024 * 1024)} MB)")
        self.max_bytes = max_bytes


class UnsupportedMediaType(StudyError):
    status_code = 415
    default_message = "Unsupported file type. Upload PDF, TXT or Markdown files."


class InsufficientContent(StudyError):
    status_code = 422
    default_message = "Document contains too little text to process."


class EmbeddingServiceError(StudyError):
    """Embedding provider failed; no partial results are kept."""

    status_code = 502
    default_message = "Embedding service unavailable"


class RetrievalError(StudyError):
    """Both hybrid and vector-only search failed."""

    status_code = 502
    default_message = "Failed to search documents"


class RetrievalTimeout(RetrievalError):
    status_code = 504
    default_message = "Document search timed out"


class GenerationError(StudyError):
    status_code = 502
    default_message = "Failed to generate an answer"


class GenerationTimeout(GenerationError):
    status_code = 504
    default_message = "Answer generation timed out"


class RateLimitExceeded(StudyError):
    """Daily allowance exhausted.

    This is an expected outcome, not a server fault: the body carries the
    current usage so clients can display a countdown to the reset time.
    """

    status_code = 429
    default_message = "Daily limit reached"

    def __init__(self, usage: Any) -> None:
        self.usage = usage
        super().__init__(
            f"You've used {usage.query_count}/{usage.daily_limit} queries today. "
            f"Resets at {usage.reset_time.isoformat()}."
        )

    def to_body(self) -> dict[str, Any]:
        return {
            "error": self.default_message,
            "message": self.message,
            "usage": self.usage.model_dump(mode="json"),
        }


class NotFound(StudyError):
    status_code = 404
    default_message = "Not found"


class Forbidden(StudyError):
    status_code = 403
    default_message = "Forbidden"


class InternalError(StudyError):
    status_code = 500
