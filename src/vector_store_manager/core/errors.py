class VSMError(Exception):
    """Base error for all user-facing vector store manager exceptions."""


class ConfigurationError(VSMError):
    """Raised when configuration is invalid or incomplete."""


class ProjectNotInitializedError(VSMError):
    """Raised when .vsm metadata is missing."""


class ValidationError(VSMError):
    """Raised when a request is missing fields or carries malformed values."""


class NotFoundError(VSMError):
    """Raised when a referenced resource (or pagination cursor) does not exist."""


class AlreadyExistsError(VSMError):
    """Raised when a natural key is already taken."""


class ConcurrentUpdateError(VSMError):
    """Raised when a versioned write observed a stale version."""


class InternalError(VSMError):
    """Raised when storage, index, or embedding collaborators fail."""


class IngestionError(InternalError):
    """Raised when a file cannot be downloaded, split, embedded, or indexed."""


class IngestionCancelledError(IngestionError):
    """Raised when the caller cancelled an in-flight ingestion or search."""


class PartialIngestionError(VSMError):
    """Raised (or returned) when some files of a multi-file request failed."""

    def __init__(self, failures: list) -> None:
        self.failures = list(failures)
        detail = "; ".join(f"{item.file_id}: {item.message}" for item in self.failures)
        super().__init__(f"{len(self.failures)} file(s) failed to ingest: {detail}")


class RateLimitedError(InternalError):
    """Raised when a collaborator rejected a call for exceeding its rate limit."""
