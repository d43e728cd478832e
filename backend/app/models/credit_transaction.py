"""
Credit transaction database model.

Append-only ledger of every balance-changing event.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.credit_enums import TransactionType, PaymentStatus


class CreditTransaction(Base):
    """
    Credit transaction model.

    Immutable once written: amount, type and owner are never updated and rows
    are never deleted. The invoice columns are filled exactly once, inside the
    database transaction that inserts a COMPLETED purchase.
    Sign convention: positive for credits in, negative for debits.
    """
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(TransactionType), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)

    # Purchase details (PURCHASE only)
    payment_amount = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    payment_provider = Column(String(50), nullable=True)
    payment_id = Column(String(255), unique=True, nullable=True)  # webhook dedup key
    payment_status = Column(Enum(PaymentStatus), nullable=True)

    # Invoice assignment (COMPLETED purchases only)
    invoice_number = Column(String(32), unique=True, nullable=True)
    invoice_year = Column(Integer, nullable=True)
    invoice_sequence = Column(Integer, nullable=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<CreditTransaction(id={self.id}, user={self.user_id}, type='{self.type.value}', amount={self.amount})>"
