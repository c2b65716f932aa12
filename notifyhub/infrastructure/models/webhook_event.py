"""SQLAlchemy model for received gateway webhooks."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from notifyhub.infrastructure.database import Base
from notifyhub.utils import now_in_app_naive_datetime


class WebhookEventModel(Base):
    """Audit trail of webhooks; rows are never deleted."""

    __tablename__ = "webhook_event"
    __table_args__ = (
        UniqueConstraint("gateway", "external_event_id", name="uq_webhook_event_dedup"),
    )

    id = Column(Integer, primary_key=True, index=True)
    gateway = Column(String(30), nullable=False, index=True)
    external_event_id = Column(String(191), nullable=False)
    event_type = Column(String(120), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    raw_body = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    received_at = Column(
        DateTime(), nullable=False, default=now_in_app_naive_datetime, index=True
    )
    processed_at = Column(DateTime(), nullable=True)
    error_message = Column(Text, nullable=True)
    attempt_id = Column(
        Integer, ForeignKey("delivery_attempt.id", ondelete="SET NULL"), nullable=True
    )


__all__ = ["WebhookEventModel"]
