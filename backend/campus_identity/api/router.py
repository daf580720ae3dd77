from fastapi import APIRouter

from campus_identity.api.auth import router as auth_router
from campus_identity.api.health import router as health_router
from campus_identity.api.students import router as students_router
from campus_identity.api.users import router as users_router

api_router = APIRouter()

# Include sub-routers
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(students_router)
api_router.include_router(users_router)
