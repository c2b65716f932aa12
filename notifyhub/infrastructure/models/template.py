"""SQLAlchemy models for notification templates and event triggers."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from notifyhub.infrastructure.database import Base


class NotificationTemplateModel(Base):
    """Reusable title/body pair with placeholders."""

    __tablename__ = "notification_template"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False, unique=True)
    title = Column(String(191), nullable=False)
    body = Column(Text, nullable=False)
    level = Column(String(16), nullable=False, default="info")
    channels = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)


class NotificationTriggerModel(Base):
    """Maps a domain event to a template and audience."""

    __tablename__ = "notification_trigger"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    event = Column(String(120), nullable=False, index=True)
    template_id = Column(
        Integer, ForeignKey("notification_template.id", ondelete="CASCADE"), nullable=False
    )
    conditions = Column(JSON, nullable=False, default=dict)
    recipient_ids = Column(JSON, nullable=False, default=list)
    recipient_roles = Column(JSON, nullable=False, default=list)
    channels = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    template = relationship("NotificationTemplateModel", lazy="joined")


__all__ = ["NotificationTemplateModel", "NotificationTriggerModel"]
