"""SQLAlchemy models for alert rules and raised alerts."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from notifyhub.infrastructure.database import Base
from notifyhub.utils import now_in_app_naive_datetime


class AlertRuleModel(Base):
    """Threshold rule evaluated by the monitoring sweep."""

    __tablename__ = "alert_rule"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False, unique=True)
    kind = Column(String(40), nullable=False)
    metric = Column(String(60), nullable=False)
    comparison = Column(String(4), nullable=False)
    threshold = Column(Float, nullable=False)
    window_seconds = Column(Integer, nullable=False)
    severity = Column(String(16), nullable=False, default="warning")
    per_gateway = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)


class AlertModel(Base):
    """Alert raised by a rule; open until the condition clears."""

    __tablename__ = "alert"

    id = Column(Integer, primary_key=True, index=True)
    rule_id = Column(Integer, ForeignKey("alert_rule.id", ondelete="SET NULL"), nullable=True)
    kind = Column(String(40), nullable=False, index=True)
    gateway = Column(String(30), nullable=True)
    severity = Column(String(16), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default="open", index=True)
    triggered_at = Column(DateTime(), nullable=False, default=now_in_app_naive_datetime)
    resolved_at = Column(DateTime(), nullable=True)
    notification_request_id = Column(Integer, nullable=True)

    rule = relationship("AlertRuleModel", lazy="joined")


__all__ = ["AlertRuleModel", "AlertModel"]
