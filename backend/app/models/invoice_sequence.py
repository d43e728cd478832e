"""
Invoice sequence database model.

One row per calendar year; the row lock serializes invoice assignment.
"""

from sqlalchemy import Column, Integer, DateTime
from backend.app.db.session import Base


class InvoiceSequence(Base):
    """
    Per-year invoice counter.

    `last_sequence` mirrors the number of COMPLETED purchases already numbered
    in the year and `last_issued_at` is the newest purchase timestamp issued,
    so purchase timestamps (and therefore invoice numbers) are strictly
    increasing in assignment order.
    """
    __tablename__ = "invoice_sequences"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_sequence = Column(Integer, default=0, nullable=False)
    last_issued_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<InvoiceSequence(year={self.year}, last_sequence={self.last_sequence})>"
