"""Notification model — inbox records created for appointment participants.

Written once by the scheduling core; read-state belongs to the inbox
features downstream.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Enum, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from hospital.models.base import Base, TimestampMixin
from hospital.models.enums import EntityType, NotificationStatus, NotificationType


class Notification(TimestampMixin, Base):
    """A message addressed to one user account."""

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    body: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type", native_enum=False, length=40),
        nullable=False,
    )
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notification_status", native_enum=False, length=20),
        default=NotificationStatus.UNREAD,
        nullable=False,
    )

    # Linked entity
    entity_type: Mapped[EntityType] = mapped_column(
        Enum(EntityType, name="entity_type", native_enum=False, length=20),
        default=EntityType.APPOINTMENT,
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)

    def __repr__(self) -> str:
        return f"<Notification user={self.user_id} type={self.type.value} entity={self.entity_id}>"
