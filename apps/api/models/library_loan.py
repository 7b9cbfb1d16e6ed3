"""LibraryLoan model."""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base, utcnow


class LibraryLoan(Base):
    """A book lent to a student."""

    __tablename__ = "library_loans"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id = Column(String, nullable=False, default="default", index=True)
    book_id = Column(String, ForeignKey("library_books.id"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("students.id"), nullable=False, index=True)
    borrow_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="active", index=True)  # active, returned
    fine = Column(Integer, nullable=False, default=0)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    book = relationship("LibraryBook", back_populates="loans")
    student = relationship("Student")
