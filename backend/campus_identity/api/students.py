import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from campus_identity.schemas.auth import CampusIdentity, RequestIdentity
from campus_identity.schemas.campus import StudentComplete, StudentDetail, StudentInfo
from campus_identity.services.campus_credentials import CampusError
from campus_identity.services.campus_service import (
    CampusNotFoundError,
    CampusService,
    get_campus_service,
)
from campus_identity.utils.auth import CampusFlexibleIdentity, campus_route

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/mahasiswa",
    tags=["Mahasiswa"],
    dependencies=[Depends(campus_route)],
)

CampusServiceDep = Annotated[CampusService, Depends(get_campus_service)]


def _campus_failure(e: CampusError) -> HTTPException:
    if isinstance(e, CampusNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    logger.error("Campus lookup failed: %s", e)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Campus system request failed",
    )


def _caller_campus_id(request: Request, identity: RequestIdentity) -> int:
    if isinstance(identity, CampusIdentity):
        return identity.campus_user_id

    user = request.state.user
    if user is None or user.campus_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No campus account is linked to this user",
        )
    return user.campus_user_id


@router.get("/me", response_model=StudentComplete)
async def get_my_profile(
    request: Request,
    identity: CampusFlexibleIdentity,
    campus_service: CampusServiceDep,
) -> StudentComplete:
    campus_user_id = _caller_campus_id(request, identity)
    try:
        return await campus_service.get_student_complete(campus_user_id)
    except CampusError as e:
        raise _campus_failure(e) from None


@router.get("", response_model=StudentInfo)
@router.get("/by-user-id", response_model=StudentInfo)
async def get_student_by_user_id(
    campus_service: CampusServiceDep,
    user_id: int = Query(..., gt=0),
) -> StudentInfo:
    try:
        return await campus_service.get_student_by_user_id(user_id)
    except CampusError as e:
        raise _campus_failure(e) from None


@router.get("/by-nim", response_model=StudentDetail)
async def get_student_by_nim(
    campus_service: CampusServiceDep,
    nim: str = Query(..., min_length=1, max_length=50),
) -> StudentDetail:
    try:
        return await campus_service.get_student_by_nim(nim)
    except CampusError as e:
        raise _campus_failure(e) from None


@router.get("/complete", response_model=StudentComplete)
async def get_student_complete(
    request: Request,
    identity: CampusFlexibleIdentity,
    campus_service: CampusServiceDep,
    user_id: Optional[int] = Query(None, gt=0),
) -> StudentComplete:
    """Basic and detailed record together. Defaults to the caller's own record."""
    if user_id is None:
        user_id = _caller_campus_id(request, identity)
    try:
        return await campus_service.get_student_complete(user_id)
    except CampusError as e:
        raise _campus_failure(e) from None
