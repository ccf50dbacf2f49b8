"""User model — an authenticated account that can receive notifications.

Doctors and patients optionally link to a User; only linked participants
get appointment notifications.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from hospital.models.base import Base, TimestampMixin
from hospital.models.enums import UserRole


class User(TimestampMixin, Base):
    """A login account (admin, doctor, patient or staff)."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", native_enum=False, length=20),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<User username={self.username} role={self.role.value}>"
