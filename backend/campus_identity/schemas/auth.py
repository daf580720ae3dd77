import enum

from pydantic import BaseModel, ConfigDict, Field

from campus_identity.schemas.user import UserResponse


class TokenSubject(BaseModel):
    """Identity fields embedded in a local access token."""

    user_id: int
    email: str
    first_name: str
    middle_name: str | None = None
    last_name: str | None = None
    user_type: str | None = None


class LocalTokenClaims(TokenSubject):
    sub: str
    exp: int  # Expiration timestamp
    iat: int | None = None
    iss: str | None = None


class IdentityOrigin(enum.StrEnum):
    local = "local"
    campus = "campus"


class RequestIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: IdentityOrigin

    @property
    def is_campus_authenticated(self) -> bool:
        return self.origin == IdentityOrigin.campus


class LocalIdentity(RequestIdentity):
    """Identity backed by a row in the local credential store."""

    origin: IdentityOrigin = IdentityOrigin.local
    user_id: int
    user_type: str
    email: str
    first_name: str
    middle_name: str | None = None
    last_name: str | None = None


class CampusIdentity(RequestIdentity):
    """Identity taken at face value from a campus-issued token.

    Carries only the campus user id; profile data has to be fetched
    through the campus gateway.
    """

    origin: IdentityOrigin = IdentityOrigin.campus
    campus_user_id: int


class LoginRequest(BaseModel):
    login_id: str = Field(..., min_length=1, max_length=255, description="Email, NIM or NIP")
    password: str = Field(..., min_length=1, max_length=255)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    token_type: str = "Bearer"


class LoginResponse(BaseModel):
    user: UserResponse
    tokens: TokenPair
    user_type: str


class MessageResponse(BaseModel):
    message: str


class CampusLoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)


class IdentityResponse(BaseModel):
    origin: IdentityOrigin
    user_id: int | None = None
    campus_user_id: int | None = None
    user_type: str | None = None
    email: str | None = None
    user: UserResponse | None = None
