"""LibraryBook model."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class LibraryBook(Base):
    """Catalogue entry with copy counters."""

    __tablename__ = "library_books"
    __table_args__ = (
        CheckConstraint("available_copies >= 0", name="ck_library_books_available_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="ck_library_books_available_le_total"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id = Column(String, nullable=False, default="default", index=True)
    title = Column(String, nullable=False)
    title_bn = Column(String, nullable=True)
    author = Column(String, nullable=False)
    isbn = Column(String, nullable=True)
    category = Column(String, nullable=False, default="general", index=True)
    publisher = Column(String, nullable=True)
    publish_year = Column(Integer, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    location = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    loans = relationship("LibraryLoan", back_populates="book")
