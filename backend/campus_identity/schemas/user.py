from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    middle_name: str | None = None
    last_name: str | None = None
    full_name: str
    email: str
    login_id: str | None = None
    campus_user_id: int | None = None
    user_type: str
    is_active: bool
    verified: bool
    last_login_at: datetime | None = None
