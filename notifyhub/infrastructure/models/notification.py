"""SQLAlchemy model for persisted in-app notifications."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text

from notifyhub.infrastructure.database import Base
from notifyhub.utils import now_in_app_naive_datetime


class NotificationModel(Base):
    """Database representation for user inbox notifications."""

    __tablename__ = "notification"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    title = Column(String(191), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(), nullable=False, default=now_in_app_naive_datetime)
    read_at = Column(DateTime(), nullable=True)


__all__ = ["NotificationModel"]
