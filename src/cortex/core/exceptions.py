"""
Exception Hierarchy

Structured error types shared by the repository, AI client, vector index
and enrichment layers. Everything inherits from CortexError so the API
layer can catch the family in one place.
"""


class CortexError(Exception):
    """
    Base exception for all Cortex errors.

    Args:
        message: Human-readable error message.
        context: Optional details (ids, status codes) for logging.
    """

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ValidationError(CortexError):
    """Caller supplied invalid input (empty content, empty query, missing id)."""


class NotFoundError(CortexError):
    """A requested note or collection does not exist."""


class NoteDeletedError(NotFoundError):
    """The note is in the trash; enrichment results must not be written to it."""


class AIServiceError(CortexError):
    """Base for AI backend failures. Callers decide the fallback."""


class ServiceUnavailableError(AIServiceError):
    """AI backend refused the connection or replied with an error."""


class AITimeoutError(AIServiceError):
    """AI backend did not answer within the configured timeout."""


class RepositoryError(CortexError):
    """Persistence layer failure."""


class StatusTransitionError(RepositoryError):
    """
    An update tried to move ai_status backwards.

    Terminal states (completed, failed, cancelled) are final and a note
    never re-enters pending.
    """


class VectorIndexError(CortexError):
    """Vector index operation failed."""
