"""
API Dependencies

FastAPI dependencies resolving the service container from app.state and
a request-scoped database session, plus the mapping from domain errors
to HTTP errors.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cortex.core.container import Services
from cortex.core.exceptions import (
    AIServiceError,
    CortexError,
    NotFoundError,
    StatusTransitionError,
    ValidationError,
    VectorIndexError,
)

# First match wins: subclasses before their bases
_STATUS_BY_ERROR: list[tuple[type[CortexError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StatusTransitionError, status.HTTP_409_CONFLICT),
    (AIServiceError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (VectorIndexError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_db(
    services: Services = Depends(get_services),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped database session.

    Yields:
        AsyncSession that is automatically closed after the request.
    """
    async with services.session_factory() as session:
        yield session


def http_error(error: CortexError) -> HTTPException:
    """Translate a domain error into the HTTP error the client sees."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message
    )
