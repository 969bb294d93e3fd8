"""Authentication API endpoints.

Provides signup, login, token refresh, and current user info. Signup also
seeds the default pipeline stages for the new account. Signing out is a
client-side concern: tokens are stateless and simply discarded.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.api.deps import get_current_user, get_db, get_service, to_http_error
from src.crm.core.context import UserContext
from src.crm.core.security import hash_password, issue_token, read_token, verify_password
from src.crm.models.user import User
from src.crm.pipeline.errors import ConflictError, PipelineError
from src.crm.schemas.auth import (
    LoginRequest,
    SignupRequest,
    TokenRefreshRequest,
    TokenResponse,
    UserResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _issue_tokens(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=issue_token(str(user.id), user.email),
        refresh_token=issue_token(str(user.id), user.email, token_type="refresh"),
    )


async def _active_user(db: AsyncSession, **criteria) -> User | None:
    if "id" in criteria:
        try:
            criteria["id"] = uuid.UUID(str(criteria["id"]))
        except ValueError:
            return None
    result = await db.execute(
        select(User).filter_by(**criteria).where(User.is_active == True)  # noqa: E712
    )
    return result.scalar_one_or_none()


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def signup(body: SignupRequest, request: Request):
    """Create an account with its default stages, and log it in.

    The user row and the stages are written in one transaction, so a failed
    signup leaves nothing behind and can simply be retried.
    """
    stage_store = get_service(request, "stage_store", "Pipeline")

    user = User(
        id=uuid.uuid4(),
        email=str(body.email).lower(),
        name=body.name.strip(),
        company=(body.company or "").strip() or None,
        hashed_password=hash_password(body.password),
        is_active=True,
    )
    ctx = UserContext(user_id=str(user.id), email=user.email)
    try:
        await stage_store.seed_default_stages(ctx, account=user)
    except ConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )
    except PipelineError as exc:
        raise to_http_error(exc)

    logger.info("user_signed_up", user_id=ctx.user_id)
    return _issue_tokens(user)


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate a user and return JWT tokens."""
    user = await _active_user(db, email=str(body.email).lower())

    if not user or not verify_password(body.password, user.hashed_password):
        logger.info("login_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    return _issue_tokens(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(body: TokenRefreshRequest, db: AsyncSession = Depends(get_db)):
    """Refresh an expired access token using a valid refresh token."""
    ctx = read_token(body.refresh_token, token_type="refresh")

    user = await _active_user(db, id=ctx.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    return _issue_tokens(user)


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the profile of the authenticated user."""
    user = await _active_user(db, id=current_user.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return UserResponse(
        id=str(user.id),
        email=user.email,
        name=user.name,
        company=user.company,
    )
