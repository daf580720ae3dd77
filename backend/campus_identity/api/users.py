from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_identity.database import get_db
from campus_identity.models.user import User, UserType
from campus_identity.schemas.user import UserResponse
from campus_identity.services.user_service import UserService
from campus_identity.utils.auth import protected_route, require_user_type

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    dependencies=[Depends(protected_route)],
)

require_admin = require_user_type(UserType.admin)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    _admin: Annotated[User, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserResponse:
    user = await UserService(db).get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return UserResponse.model_validate(user)
