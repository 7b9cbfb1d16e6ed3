"""InventoryMovement model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base, utcnow


class InventoryMovement(Base):
    """Stock movement. `quantity_after` records the resulting stock level."""

    __tablename__ = "inventory_movements"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id = Column(String, nullable=False, default="default", index=True)
    item_id = Column(String, ForeignKey("inventory_items.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # in, out, adjustment
    quantity = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    reference = Column(String, nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    item = relationship("InventoryItem", back_populates="movements")
