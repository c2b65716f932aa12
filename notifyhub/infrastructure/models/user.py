"""SQLAlchemy model for the recipient directory."""

from sqlalchemy import Boolean, Column, Integer, String

from notifyhub.infrastructure.database import Base


class UserModel(Base):
    """Marketplace user as seen by the notification engine."""

    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(120), nullable=True, index=True)
    phone = Column(String(32), nullable=True)
    push_token = Column(String(255), nullable=True)
    role = Column(String(30), nullable=False, index=True, default="student")
    is_active = Column(Boolean, nullable=False, default=True)


__all__ = ["UserModel"]
