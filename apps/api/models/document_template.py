"""DocumentTemplate model."""

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class DocumentTemplate(Base):
    """Template for a generated school document (ID card, admit card, certificate)."""

    __tablename__ = "document_templates"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    name_bn = Column(String, nullable=True)
    type = Column(String, nullable=False, index=True)  # id_card, admit_card, certificate, ...
    category = Column(String, nullable=False, index=True)
    category_bn = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    # [{"name": "student_name", "label": "...", "label_bn": "...", "type": "string", "required": true}]
    fields = Column(JSON, nullable=False, default=list)
    layout = Column(JSON, nullable=True)
    credit_cost = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    school_id = Column(String, nullable=True, index=True)  # null = available to every school
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
