import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_identity.database import Base

if TYPE_CHECKING:
    from campus_identity.models.user import User


class TokenKind(enum.StrEnum):
    refresh = "refresh"
    verification = "verification"
    password_reset = "password_reset"


class Token(Base):
    """Server-side opaque token. Deleted on use, swept once expired."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    kind: Mapped[TokenKind] = mapped_column(
        Enum(TokenKind, name="token_kind"), nullable=False, default=TokenKind.refresh
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="tokens")
