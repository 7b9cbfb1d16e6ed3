"""Student model."""

from sqlalchemy import Column, Date, DateTime, String
from sqlalchemy.sql import func
import uuid

from database import Base


class Student(Base):
    """Student record. Soft-deleted via status."""

    __tablename__ = "students"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id = Column(String, nullable=False, default="default", index=True)
    student_code = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    name_bn = Column(String, nullable=True)
    class_name = Column(String, nullable=True, index=True)
    section = Column(String, nullable=True)
    roll_number = Column(String, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String, nullable=True)
    blood_group = Column(String, nullable=True)
    father_name = Column(String, nullable=True)
    mother_name = Column(String, nullable=True)
    guardian_phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")  # active, inactive
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
