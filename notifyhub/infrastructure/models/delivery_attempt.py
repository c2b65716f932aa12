"""SQLAlchemy model for per recipient/channel delivery attempts."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from notifyhub.infrastructure.database import Base
from notifyhub.utils import now_in_app_naive_datetime


class DeliveryAttemptModel(Base):
    """Delivery state of one request for one recipient over one channel."""

    __tablename__ = "delivery_attempt"
    __table_args__ = (
        UniqueConstraint(
            "request_id", "recipient_id", "channel", name="uq_delivery_attempt_target"
        ),
        Index("ix_delivery_attempt_status_retry", "status", "next_retry_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(
        Integer,
        ForeignKey("notification_request.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    recipient_id = Column(Integer, nullable=False, index=True)
    channel = Column(String(20), nullable=False)
    level = Column(String(16), nullable=False, default="info")
    status = Column(String(20), nullable=False, default="pending")
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    last_error = Column(Text, nullable=True)
    next_retry_at = Column(DateTime(), nullable=True)
    provider_message_id = Column(String(191), nullable=True)
    created_at = Column(DateTime(), nullable=False, default=now_in_app_naive_datetime)
    updated_at = Column(DateTime(), nullable=False, default=now_in_app_naive_datetime)
    sent_at = Column(DateTime(), nullable=True)
    delivered_at = Column(DateTime(), nullable=True)

    request = relationship("NotificationRequestModel", back_populates="attempts")


__all__ = ["DeliveryAttemptModel"]
