import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_identity.config import get_settings
from campus_identity.database import get_db
from campus_identity.models.token import TokenKind
from campus_identity.models.user import User, UserType
from campus_identity.schemas.auth import (
    CampusLoginRequest,
    IdentityResponse,
    LocalIdentity,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshTokenRequest,
    TokenPair,
    TokenSubject,
)
from campus_identity.schemas.campus import CampusLoginResult
from campus_identity.schemas.user import UserResponse
from campus_identity.services.campus_credentials import CampusAuthError, CampusUnavailableError
from campus_identity.services.campus_service import CampusService, get_campus_service
from campus_identity.services.token_service import (
    TokenExpiredError,
    TokenNotFoundError,
    TokenService,
)
from campus_identity.services.user_service import UserService
from campus_identity.utils.auth import CurrentLocalUser, ProtectedIdentity
from campus_identity.utils.tokens import issue_access_token

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])
settings = get_settings()


def _credentials_rejected(detail: str = "Invalid login ID or password") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _start_session(db: AsyncSession, user: User) -> LoginResponse:
    """Issue an access token plus a fresh refresh token row for ``user``."""
    subject = TokenSubject(
        user_id=user.id,
        email=user.email,
        first_name=user.first_name,
        middle_name=user.middle_name,
        last_name=user.last_name,
        user_type=str(user.user_type),
    )
    lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    access_token, _ = issue_access_token(subject, lifetime=lifetime)

    refresh = await TokenService(db).create(
        user.id,
        timedelta(hours=settings.refresh_token_expire_hours),
        kind=TokenKind.refresh,
    )

    return LoginResponse(
        user=UserResponse.model_validate(user),
        tokens=TokenPair(
            access_token=access_token,
            refresh_token=refresh.token,
            expires_in=int(lifetime.total_seconds()),
        ),
        user_type=str(user.user_type),
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> LoginResponse:
    user_service = UserService(db)
    user = await user_service.authenticate(credentials.login_id, credentials.password)
    if user is None:
        logger.info("Failed login attempt for %s", credentials.login_id)
        raise _credentials_rejected()

    await user_service.update_last_login(user)
    logger.info("User %d logged in", user.id)
    return await _start_session(db, user)


@router.post("/admin/login", response_model=LoginResponse)
async def admin_login(
    credentials: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> LoginResponse:
    user_service = UserService(db)
    user = await user_service.authenticate(credentials.login_id, credentials.password)
    # Non-admin accounts get the same answer as a wrong password
    if user is None or user.user_type != UserType.admin:
        logger.info("Failed admin login attempt for %s", credentials.login_id)
        raise _credentials_rejected()

    await user_service.update_last_login(user)
    logger.info("Admin %d logged in", user.id)
    return await _start_session(db, user)


@router.post("/refresh", response_model=LoginResponse)
async def refresh_session(
    body: RefreshTokenRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> LoginResponse:
    """Exchange a refresh token for a new session. The old token is consumed."""
    try:
        user_id = await TokenService(db).consume(body.refresh_token, TokenKind.refresh)
    except TokenNotFoundError:
        raise _credentials_rejected("Invalid or expired refresh token") from None
    except TokenExpiredError:
        # Keep the deletion of the stale row
        await db.commit()
        raise _credentials_rejected("Invalid or expired refresh token") from None

    user = await UserService(db).get_by_id(user_id)
    if user is None or not user.is_active:
        raise _credentials_rejected("Invalid or expired refresh token")

    return await _start_session(db, user)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: RefreshTokenRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    try:
        await TokenService(db).revoke(body.refresh_token, TokenKind.refresh)
    except TokenNotFoundError:
        raise _credentials_rejected("Invalid refresh token") from None
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    user: CurrentLocalUser,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    """Revoke every refresh token of the caller, ending all of their sessions."""
    revoked = await TokenService(db).revoke_all_for_user(user.id, TokenKind.refresh)
    logger.info("Revoked %d refresh tokens for user %d", revoked, user.id)
    return MessageResponse(message="Logged out of all sessions")


@router.post("/campus/login", response_model=CampusLoginResult)
async def campus_login(
    credentials: CampusLoginRequest,
    campus_service: Annotated[CampusService, Depends(get_campus_service)],
) -> CampusLoginResult:
    """Log an end user in through the campus information system."""
    try:
        return await campus_service.login(credentials.username, credentials.password)
    except CampusAuthError:
        raise _credentials_rejected("Campus login failed") from None
    except CampusUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Campus system is unavailable",
        ) from None


@router.get("/me", response_model=IdentityResponse)
async def get_me(
    request: Request,
    identity: ProtectedIdentity,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> IdentityResponse:
    if isinstance(identity, LocalIdentity):
        return IdentityResponse(
            origin=identity.origin,
            user_id=identity.user_id,
            user_type=identity.user_type,
            email=identity.email,
            user=UserResponse.model_validate(request.state.user),
        )

    # Campus tokens carry only the campus uid; attach the linked local account if any
    linked = await UserService(db).get_by_campus_user_id(identity.campus_user_id)
    if linked is not None and not linked.is_active:
        linked = None
    return IdentityResponse(
        origin=identity.origin,
        campus_user_id=identity.campus_user_id,
        user=UserResponse.model_validate(linked) if linked is not None else None,
    )
