"""Service layer for business logic."""

from campus_identity.services.campus_service import CampusService, get_campus_service
from campus_identity.services.token_service import TokenService
from campus_identity.services.user_service import UserService

__all__ = [
    "CampusService",
    "get_campus_service",
    "TokenService",
    "UserService",
]
