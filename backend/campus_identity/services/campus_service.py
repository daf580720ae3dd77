import logging
from datetime import timedelta
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from campus_identity.config import get_settings
from campus_identity.schemas.campus import (
    CampusAuthResponse,
    CampusLoginResult,
    StudentComplete,
    StudentDetail,
    StudentDetailResponse,
    StudentInfo,
    StudentListResponse,
)
from campus_identity.services.campus_credentials import (
    CampusAuthError,
    CampusCredentialManager,
    CampusError,
    CampusUnavailableError,
    login_form,
)

logger = logging.getLogger(__name__)
settings = get_settings()


class CampusService:
    """Client for the campus information system.

    Directory and profile lookups are authenticated with the shared service
    credential from ``credentials``; end-user login goes straight to the
    campus auth endpoint.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        credentials: CampusCredentialManager,
        *,
        base_url: str,
        auth_url: str,
    ):
        self.http = http
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.auth_url = auth_url

    async def _get_json(self, resource: str, params: dict[str, Any]) -> Any:
        url = f"{self.base_url}/{resource.lstrip('/')}"
        response = await self.credentials.request("GET", url, params=params)

        if response.status_code == httpx.codes.NOT_FOUND:
            raise CampusNotFoundError(f"Campus resource not found: {resource}")
        if response.is_error:
            logger.error("Campus API error for %s: HTTP %d", resource, response.status_code)
            raise CampusServiceError(f"Campus API returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError:
            logger.error("Campus API returned non-JSON body for %s", resource)
            raise CampusServiceError("Campus API returned an unreadable response") from None

    async def login(self, username: str, password: str) -> CampusLoginResult:
        """Authenticate an end user against the campus system.

        Raises:
            CampusAuthError: If the campus system rejects the credentials.
            CampusUnavailableError: If the campus system cannot be reached.
        """
        try:
            response = await self.http.post(
                self.auth_url,
                files=login_form(username, password),
                headers={"Accept": "*/*"},
            )
        except httpx.HTTPError as e:
            logger.error("Campus login request failed: %s", e)
            raise CampusUnavailableError(f"Campus login request failed: {e}") from e

        if response.status_code >= 500:
            raise CampusUnavailableError(f"Campus login failed with status {response.status_code}")

        try:
            body = CampusAuthResponse.model_validate(response.json())
        except ValueError:
            body = None

        if body is None or not body.result or not body.token:
            reason = body.error if body is not None and body.error else "invalid credentials"
            logger.info("Campus login rejected for %s: %s", username, reason)
            raise CampusAuthError(reason)

        return CampusLoginResult(token=body.token, refresh_token=body.refresh_token, user=body.user)

    async def get_student_by_user_id(self, user_id: int) -> StudentInfo:
        """
        Fetch a student's directory entry by campus user id.

        Raises:
            CampusNotFoundError: If no student has this user id
            CampusServiceError: If the campus API answers with an error
        """
        logger.info("Fetching student info for campus user %d", user_id)
        data = await self._get_json("library-api/mahasiswa", {"userid": user_id})

        try:
            listing = StudentListResponse.model_validate(data)
        except ValidationError:
            raise CampusServiceError("Unexpected student listing format") from None

        if listing.result.lower() != "ok":
            logger.warning("Campus API returned result %r for user %d", listing.result, user_id)
            raise CampusServiceError(f"Campus API returned non-Ok result: {listing.result}")

        if not listing.data.mahasiswa:
            raise CampusNotFoundError(f"No student found with user ID: {user_id}")

        student = listing.data.mahasiswa[0]
        logger.info("Found student %s (NIM %s)", student.nama, student.nim)
        return student

    async def get_student_by_nim(self, nim: str) -> StudentDetail:
        """
        Fetch a student's detailed record by NIM.

        Raises:
            CampusNotFoundError: If the campus API has no record
            CampusServiceError: If the campus API answers with an error
        """
        logger.info("Fetching student details for NIM %s", nim)
        data = await self._get_json("library-api/get-student-by-nim", {"nim": nim})

        try:
            detail = StudentDetailResponse.model_validate(data)
        except ValidationError:
            raise CampusServiceError("Unexpected student detail format") from None

        if detail.result.lower() != "ok":
            raise CampusServiceError(f"Failed to get student details for NIM: {nim}")
        if detail.data is None:
            raise CampusNotFoundError(f"No student found with NIM: {nim}")

        return detail.data

    async def get_student_complete(self, user_id: int) -> StudentComplete:
        """Directory entry plus detailed record for one campus user."""
        basic_info = await self.get_student_by_user_id(user_id)
        details = await self.get_student_by_nim(basic_info.nim)
        return StudentComplete(basic_info=basic_info, details=details)

    async def check_health(self) -> dict:
        """Report the state of the cached service credential."""
        credential = self.credentials.credential
        if credential is None:
            return {"status": "cold", "credential_cached": False}
        return {
            "status": "healthy",
            "credential_cached": True,
            "expires_at": credential.expires_at.isoformat(),
        }

    async def close(self) -> None:
        await self.http.aclose()


class CampusServiceError(CampusError):
    """Campus API answered with an error or an unexpected payload."""

    pass


class CampusNotFoundError(CampusServiceError):
    """Campus API has no record for the requested key."""

    pass


# Singleton instance
_campus_service: Optional[CampusService] = None


def build_campus_service() -> CampusService:
    http = httpx.AsyncClient(timeout=settings.campus_timeout)
    credentials = CampusCredentialManager(
        http,
        auth_url=settings.campus_auth_url,
        username=settings.campus_username,
        password=settings.campus_password,
        safety_margin=timedelta(seconds=settings.campus_token_safety_margin),
        default_lifetime=timedelta(seconds=settings.campus_token_default_lifetime),
    )
    return CampusService(
        http,
        credentials,
        base_url=settings.campus_api_base_url,
        auth_url=settings.campus_auth_url,
    )


def get_campus_service() -> CampusService:
    """Get or create the campus service instance."""
    global _campus_service
    if _campus_service is None:
        _campus_service = build_campus_service()
    return _campus_service
