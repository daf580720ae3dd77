"""Request authentication.

Two kinds of bearer token reach this service: local access tokens signed
with SECRET_KEY, and tokens minted by the campus information system that are
trusted at face value. Each router is registered with a ``RouteClass`` that
decides which kind is tried first:

- ``protected``: local token first, campus token as a fallback.
- ``campus``: campus token first (the student/assistant apps log in through
  the campus system), local token as a fallback.
- ``public``: no authentication.

Whichever strategy fails, the client only ever sees one generic 401.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Optional, Protocol

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_identity.database import get_db
from campus_identity.models.user import User
from campus_identity.schemas.auth import CampusIdentity, LocalIdentity, RequestIdentity
from campus_identity.services.user_service import UserService
from campus_identity.utils.campus_tokens import validate_campus_token
from campus_identity.utils.tokens import ConfigError, TokenError, verify_access_token

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 20
GENERIC_AUTH_FAILURE = "Invalid or expired token"


class RouteClass(enum.StrEnum):
    public = "public"
    protected = "protected"
    campus = "campus"


class AuthStrategy(enum.StrEnum):
    local = "local"
    campus = "campus"


STRATEGY_ORDER: dict[RouteClass, tuple[AuthStrategy, ...]] = {
    RouteClass.public: (),
    RouteClass.protected: (AuthStrategy.local, AuthStrategy.campus),
    RouteClass.campus: (AuthStrategy.campus, AuthStrategy.local),
}


class UserLookup(Protocol):
    async def get_by_id(self, user_id: int) -> Optional[User]: ...


class AuthenticationError(Exception):
    """Request could not be authenticated."""

    pass


class MissingCredentialsError(AuthenticationError):
    pass


class CredentialStoreError(Exception):
    """A strategy could not reach a verdict because a backing store failed."""

    pass


@dataclass
class AuthenticationResult:
    identity: Optional[RequestIdentity]
    # Set only for local identities; the row the token was checked against
    user: Optional[User] = None


def parse_bearer_token(header: Optional[str]) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        MissingCredentialsError: If the header is absent or empty
        AuthenticationError: If the header is not exactly ``Bearer <token>``
            or the token is implausibly short
    """
    if not header:
        raise MissingCredentialsError("Authorization header is missing")

    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise AuthenticationError("Invalid authorization header format")

    token = parts[1]
    if len(token) < MIN_TOKEN_LENGTH:
        raise AuthenticationError(f"Token too short ({len(token)} chars)")
    return token


class Authenticator:
    """Runs the strategies for one route class against one bearer token."""

    def __init__(
        self,
        users: UserLookup,
        *,
        secret: str | None = None,
        now: datetime | None = None,
    ):
        self.users = users
        self.secret = secret
        self.now = now

    async def authenticate(
        self, route_class: RouteClass, authorization: Optional[str]
    ) -> AuthenticationResult:
        """
        Resolve the identity behind ``authorization`` for ``route_class``.

        Strategies run strictly in the order given by ``STRATEGY_ORDER``;
        the second one runs only if the first failed, for any reason.

        Raises:
            AuthenticationError: If every strategy rejected the token
            CredentialStoreError: If every strategy failed and at least one
                failed because of a store or configuration error
        """
        order = STRATEGY_ORDER[route_class]
        if not order:
            return AuthenticationResult(identity=None)

        token = parse_bearer_token(authorization)

        store_failed = False
        for strategy in order:
            try:
                if strategy == AuthStrategy.local:
                    return await self._authenticate_local(token)
                return self._authenticate_campus(token)
            except (TokenError, AuthenticationError) as e:
                logger.info("%s strategy rejected token: %s", strategy, e)
            except (SQLAlchemyError, ConfigError) as e:
                store_failed = True
                logger.error("%s strategy could not validate token: %s", strategy, e)

        if store_failed:
            raise CredentialStoreError("Token could not be validated")
        logger.info("Authentication failed: all strategies exhausted for %s route", route_class)
        raise AuthenticationError(GENERIC_AUTH_FAILURE)

    async def _authenticate_local(self, token: str) -> AuthenticationResult:
        claims = verify_access_token(token, secret=self.secret, now=self.now)

        user = await self.users.get_by_id(claims.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError(f"User {claims.user_id} not found")

        logger.debug("Local token accepted for user %d", user.id)
        identity = LocalIdentity(
            user_id=user.id,
            user_type=str(user.user_type),
            email=user.email,
            first_name=user.first_name,
            middle_name=user.middle_name,
            last_name=user.last_name,
        )
        return AuthenticationResult(identity=identity, user=user)

    def _authenticate_campus(self, token: str) -> AuthenticationResult:
        campus_user_id = validate_campus_token(token, now=self.now)
        logger.debug("Campus token accepted for campus user %d", campus_user_id)
        return AuthenticationResult(identity=CampusIdentity(campus_user_id=campus_user_id))


class RouteAuth:
    """
    FastAPI dependency binding a route class to a router or endpoint.

    Use one shared instance per class so FastAPI runs it once per request
    even when both the router and the endpoint depend on it.
    """

    def __init__(self, route_class: RouteClass):
        self.route_class = route_class

    async def __call__(
        self,
        request: Request,
        db: Annotated[AsyncSession, Depends(get_db)],
    ) -> Optional[RequestIdentity]:
        authenticator = Authenticator(UserService(db))
        try:
            result = await authenticator.authenticate(
                self.route_class, request.headers.get("Authorization")
            )
        except AuthenticationError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=GENERIC_AUTH_FAILURE,
                headers={"WWW-Authenticate": "Bearer"},
            ) from None
        except CredentialStoreError:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error",
            ) from None

        request.state.identity = result.identity
        request.state.user = result.user
        return result.identity


protected_route = RouteAuth(RouteClass.protected)
campus_route = RouteAuth(RouteClass.campus)


async def get_current_user(
    request: Request,
    identity: Annotated[RequestIdentity, Depends(protected_route)],
) -> User:
    """Local account of the caller. Campus-only identities are refused."""
    if not isinstance(identity, LocalIdentity):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This endpoint requires a local account",
        )
    return request.state.user


def require_user_type(*user_types: str):
    """Dependency factory restricting a route to the given local user types."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if user.user_type not in user_types:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency


# Type aliases for dependency injection
ProtectedIdentity = Annotated[RequestIdentity, Depends(protected_route)]
CampusFlexibleIdentity = Annotated[RequestIdentity, Depends(campus_route)]
CurrentLocalUser = Annotated[User, Depends(get_current_user)]
