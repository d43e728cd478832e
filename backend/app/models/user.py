"""
User database model.

Users are provisioned from the identity provider; this row carries the
credit balance and the counters the ledger services depend on.
"""

from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Enum, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import UserRole


class User(Base):
    """
    User model.

    `credit_balance` is a materialized view of the user's ledger: it is only
    ever changed by CreditLedger, in the same database transaction as the
    CreditTransaction row that explains the change.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_users_credit_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    external_id = Column(String(255), unique=True, index=True, nullable=True)  # identity provider subject
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)

    # Credits
    credit_balance = Column(Integer, default=0, nullable=False)

    # Daily bonus state (calendar day in the business timezone)
    last_login_date = Column(Date, nullable=True)
    login_streak = Column(Integer, default=0, nullable=False)

    # Referral (referral_redeemed only ever flips false -> true)
    referral_code = Column(String(20), unique=True, index=True, nullable=True)
    referral_redeemed = Column(Boolean, default=False, nullable=False)
    referred_by_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Activity counters
    total_readings = Column(Integer, default=0, nullable=False)
    total_questions_asked = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', balance={self.credit_balance})>"
