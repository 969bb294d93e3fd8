"""FastAPI dependency injection for authentication and pipeline services.

These dependencies are used in endpoint function signatures to inject
the authenticated user and the services wired onto app.state at startup.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.core.context import UserContext
from src.crm.core.database import get_session
from src.crm.core.security import read_token
from src.crm.pipeline.errors import (
    ConflictError,
    NotFoundError,
    PipelineError,
    TransportError,
    ValidationError,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get an unscoped database session (auth endpoints only)."""
    async for session in get_session():
        yield session


async def get_current_user(request: Request) -> UserContext:
    """Extract the current user from a Bearer JWT.

    Raises:
        HTTPException(401): If no valid access token is provided.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return read_token(auth_header[7:], token_type="access")

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_service(request: Request, name: str, label: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


_STATUS_BY_ERROR: list[tuple[type[PipelineError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
]


def to_http_error(exc: PipelineError) -> HTTPException:
    """Map a pipeline error onto the HTTP status the API reports for it."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)
