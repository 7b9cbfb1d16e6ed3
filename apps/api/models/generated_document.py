"""GeneratedDocument model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship

from database import Base, utcnow


class GeneratedDocument(Base):
    """One generation request. Status moves pending -> completed | failed, never back."""

    __tablename__ = "generated_documents"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    template_id = Column(String, ForeignKey("document_templates.id"), nullable=False, index=True)
    input_data = Column(JSON, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    credits_charged = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)  # pending, completed, failed
    file_url = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    refunded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="generated_documents")
    template = relationship("DocumentTemplate")
