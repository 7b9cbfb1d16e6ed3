"""CreditTransaction model for the append-only credit log."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base, utcnow


class CreditTransaction(Base):
    """Immutable credit log entry. Positive amounts credit, negative debit."""

    __tablename__ = "credit_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)  # debit, topup, purchase, refund, bonus, adjustment
    description = Column(String, nullable=True)
    balance_after = Column(Integer, nullable=False)
    reference_type = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="credit_transactions")
