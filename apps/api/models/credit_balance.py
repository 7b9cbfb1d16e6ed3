"""CreditBalance model: one row per user holding the spendable balance."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditBalance(Base):
    """Current, bonus and used credit counters for a user."""

    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("current_credits >= 0", name="ck_credit_balances_current_non_negative"),
    )

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    current_credits = Column(Integer, nullable=False, default=0)
    bonus_credits = Column(Integer, nullable=False, default=0)
    used_credits = Column(Integer, nullable=False, default=0)
    total_purchased = Column(Integer, nullable=False, default=0)
    initial_credits = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="credit_balance")
