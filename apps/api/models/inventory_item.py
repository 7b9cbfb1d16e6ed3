"""InventoryItem model."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class InventoryItem(Base):
    """Stock-tracked school asset or consumable."""

    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("current_quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id = Column(String, nullable=False, default="default", index=True)
    name = Column(String, nullable=False)
    name_bn = Column(String, nullable=True)
    category = Column(String, nullable=False, default="general", index=True)
    unit = Column(String, nullable=False, default="pcs")
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)
    current_quantity = Column(Integer, nullable=False, default=0)
    minimum_threshold = Column(Integer, nullable=False, default=10)
    location = Column(String, nullable=True)
    condition = Column(String, nullable=True)
    supplier = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    movements = relationship("InventoryMovement", back_populates="item")
