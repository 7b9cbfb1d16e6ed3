"""CreditPackage model."""

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func
import uuid

from database import Base


class CreditPackage(Base):
    """Purchasable bundle of credits. A price of 0 marks the monthly free package."""

    __tablename__ = "credit_packages"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    name_bn = Column(String, nullable=True)
    credits = Column(Integer, nullable=False)
    bonus_credits = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
