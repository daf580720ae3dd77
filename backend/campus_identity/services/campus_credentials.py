"""Shared service credential for the campus information system.

Every outbound campus call carries one bearer token obtained by logging in
with the configured service account. The manager caches that token,
re-authenticates shortly before it expires, and retries a request once when
the campus API answers 401 before the claimed expiry.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from campus_identity.schemas.campus import CampusAuthResponse
from campus_identity.utils.campus_tokens import token_expiry

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = timedelta(seconds=30)
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _prefix(token: str, length: int = 10) -> str:
    return token[:length]


def login_form(username: str, password: str) -> dict[str, tuple[None, str]]:
    """Fields for the campus `do-auth` endpoint, sent as multipart/form-data."""
    # No filename, so httpx encodes each entry as a plain form field
    return {"username": (None, username), "password": (None, password)}


@dataclass(frozen=True)
class CampusCredential:
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: datetime


class CampusCredentialManager:
    """Owns the cached campus credential and its refresh cycle.

    The credential is an immutable value replaced as a whole, so a reader
    always sees either the old or the new triple. Re-authentication runs
    under an asyncio lock; tasks that queued behind a refresh re-check the
    cache before logging in again.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        auth_url: str,
        username: str | None,
        password: str | None,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        default_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._http = http
        self._auth_url = auth_url
        self._username = username
        self._password = password
        self._safety_margin = safety_margin
        self._default_lifetime = default_lifetime
        self._clock = clock
        self._credential: Optional[CampusCredential] = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Optional[CampusCredential]:
        """Current cached credential, if any."""
        return self._credential

    def _is_fresh(self, credential: Optional[CampusCredential]) -> bool:
        if credential is None or not credential.access_token:
            return False
        return self._clock() + self._safety_margin < credential.expires_at

    async def get_token(self) -> str:
        """Return a usable bearer token, logging in first if the cache is stale.

        Raises:
            CampusAuthError: If the service-account login fails.
        """
        credential = self._credential
        if self._is_fresh(credential):
            return credential.access_token

        async with self._lock:
            # Another task may have refreshed while this one waited
            credential = self._credential
            if self._is_fresh(credential):
                return credential.access_token

            if credential is None:
                logger.info("No campus credential cached, authenticating")
            else:
                logger.info(
                    "Campus credential expires at %s, re-authenticating",
                    credential.expires_at.isoformat(),
                )
            credential = await self._authenticate()
            self._credential = credential
            return credential.access_token

    async def force_refresh(self, rejected_token: str) -> str:
        """Discard ``rejected_token`` and log in again unconditionally.

        If the cache already holds a different, fresh token (a concurrent
        task replaced it after the same rejection) that token is returned
        instead of logging in a second time.

        Raises:
            CampusAuthError: If the service-account login fails.
        """
        async with self._lock:
            current = self._credential
            if (
                current is not None
                and current.access_token != rejected_token
                and self._is_fresh(current)
            ):
                return current.access_token

            self._credential = None
            credential = await self._authenticate()
            self._credential = credential
            return credential.access_token

    async def prefetch(self) -> None:
        """Warm the cache at startup. Failures are logged, not raised."""
        try:
            await self.get_token()
        except CampusError as e:
            logger.warning("Initial campus token fetch failed: %s", e)
            return
        logger.info("Initial campus token pre-fetched")

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send an authenticated request to the campus API.

        A 401 answer triggers one forced re-authentication and exactly one
        retry. Network failures and timeouts are not retried.

        Raises:
            CampusAuthError: If login fails or the retried request is rejected again.
            CampusUnavailableError: If the campus API cannot be reached.
        """
        token = await self.get_token()
        response = await self._send(method, url, token, params=params, headers=headers)
        if response.status_code != httpx.codes.UNAUTHORIZED:
            return response

        logger.warning(
            "Campus API answered 401 for %s with token %s..., re-authenticating",
            url,
            _prefix(token),
        )
        await response.aclose()

        token = await self.force_refresh(token)
        response = await self._send(method, url, token, params=params, headers=headers)
        if response.status_code == httpx.codes.UNAUTHORIZED:
            await response.aclose()
            raise CampusAuthError("Campus API rejected a freshly issued credential")
        return response

    async def _send(
        self,
        method: str,
        url: str,
        token: str,
        *,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        request_headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._http.request(
                method, url, params=params, headers=request_headers
            )
        except httpx.TimeoutException as e:
            logger.error("Campus API request to %s timed out: %s", url, e)
            raise CampusUnavailableError(f"Campus API timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Campus API request to %s failed: %s", url, e)
            raise CampusUnavailableError(f"Campus API request failed: {e}") from e

        logger.debug("Campus API %s %s -> %d", method, url, response.status_code)
        return response

    async def _authenticate(self) -> CampusCredential:
        if not self._username or not self._password:
            raise CampusAuthError("Campus service account is not configured")

        logger.info("Authenticating with campus API as %s", self._username)
        try:
            response = await self._http.post(
                self._auth_url,
                files=login_form(self._username, self._password),
                headers={"Accept": "*/*"},
            )
        except httpx.HTTPError as e:
            raise CampusAuthError(f"Campus login request failed: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise CampusAuthError(f"Campus login failed with status {response.status_code}")

        try:
            body = CampusAuthResponse.model_validate(response.json())
        except ValueError as e:
            raise CampusAuthError(f"Unparseable campus login response: {e}") from e

        if not body.result:
            raise CampusAuthError(f"Campus login rejected: {body.error or 'no reason given'}")
        if not body.token:
            raise CampusAuthError("Campus login returned an empty token")

        expires_at = token_expiry(body.token, self._default_lifetime, now=self._clock())
        logger.info("Obtained campus token %s..., expires at %s", _prefix(body.token), expires_at)
        return CampusCredential(
            access_token=body.token,
            refresh_token=body.refresh_token,
            expires_at=expires_at,
        )


class CampusError(Exception):
    """Base class for campus integration failures."""

    pass


class CampusAuthError(CampusError):
    """Authenticating against the campus API failed."""

    pass


class CampusUnavailableError(CampusError):
    """The campus API could not be reached or timed out."""

    pass
