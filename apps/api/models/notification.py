"""Notification model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.sql import func

from database import Base, utcnow


class Notification(Base):
    """Bilingual notification addressed to a user, a role, a school or the public."""

    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=False)
    title_bn = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    message_bn = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="info")  # info, success, warning, error, urgent
    priority = Column(String, nullable=False, default="medium")  # low, medium, high, urgent
    category = Column(String, nullable=False, default="general")
    category_bn = Column(String, nullable=True)
    recipient_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    recipient_type = Column(String, nullable=False, default="user")  # user, role, school, public
    recipient_role = Column(String, nullable=True)
    school_id = Column(String, nullable=False, default="default", index=True)
    sender = Column(String, nullable=True)
    action_required = Column(Boolean, nullable=False, default=False)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
