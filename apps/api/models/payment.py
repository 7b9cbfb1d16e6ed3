"""Payment model for credit top-ups and package purchases."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base, utcnow


class Payment(Base):
    """A payment received (or awaiting verification) in exchange for credits."""

    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="BDT")
    payment_method = Column(String, nullable=False)  # bkash, nagad, rocket, card, cash, free
    # External gateway id; unique so a replayed payment can only credit once.
    transaction_id = Column(String, nullable=True, unique=True)
    # "<user>:<package>:<YYYY-MM>:<slot>" for free claims; caps concurrent claims per month.
    free_claim_key = Column(String, nullable=True, unique=True)
    payment_number = Column(String, nullable=True)
    package_id = Column(String, ForeignKey("credit_packages.id"), nullable=True, index=True)
    credits = Column(Integer, nullable=False, default=0)
    bonus_credits = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)  # pending, completed, rejected
    description = Column(String, nullable=True)
    admin_notes = Column(String, nullable=True)
    verified_by = Column(String, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="payments", foreign_keys=[user_id])
    package = relationship("CreditPackage")
