"""SQLAlchemy model for notification requests."""

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from notifyhub.infrastructure.database import Base
from notifyhub.utils import now_in_app_naive_datetime


class NotificationRequestModel(Base):
    """Database representation of a submitted notification request."""

    __tablename__ = "notification_request"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(191), nullable=True, unique=True)
    title = Column(String(191), nullable=False)
    body = Column(Text, nullable=False)
    level = Column(String(16), nullable=False, default="info", index=True)
    recipient_ids = Column(JSON, nullable=False, default=list)
    recipient_roles = Column(JSON, nullable=False, default=list)
    channels = Column(JSON, nullable=False, default=list)
    template_name = Column(String(120), nullable=True)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    require_all_channels = Column(Boolean, nullable=False, default=False)
    scheduled_at = Column(DateTime(), nullable=True, index=True)
    frequency = Column(String(16), nullable=False, default="one-time")
    status = Column(String(20), nullable=False, default="scheduled", index=True)
    created_at = Column(DateTime(), nullable=False, default=now_in_app_naive_datetime)
    dispatched_at = Column(DateTime(), nullable=True)
    completed_at = Column(DateTime(), nullable=True)

    attempts = relationship(
        "DeliveryAttemptModel",
        back_populates="request",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


__all__ = ["NotificationRequestModel"]
