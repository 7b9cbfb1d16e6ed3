"""Teacher model."""

from sqlalchemy import Column, Date, DateTime, String
from sqlalchemy.sql import func
import uuid

from database import Base


class Teacher(Base):
    """Teacher record. Soft-deleted via status."""

    __tablename__ = "teachers"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id = Column(String, nullable=False, default="default", index=True)
    teacher_code = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    name_bn = Column(String, nullable=True)
    designation = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    joining_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="active")  # active, inactive
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
