"""User model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


USER_ROLES = ("admin", "teacher", "student", "parent")


class User(Base):
    """Authenticated school user. Never hard-deleted; status flips to inactive."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    full_name_bn = Column(String, nullable=True)
    role = Column(String, nullable=False, default="teacher")  # admin, teacher, student, parent
    school_id = Column(String, nullable=False, default="default", index=True)
    status = Column(String, nullable=False, default="active")  # active, inactive
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_balance = relationship("CreditBalance", back_populates="user", uselist=False)
    credit_transactions = relationship("CreditTransaction", back_populates="user")
    payments = relationship("Payment", back_populates="user", foreign_keys="Payment.user_id")
    generated_documents = relationship("GeneratedDocument", back_populates="user")
