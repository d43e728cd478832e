"""
Audit Log Database Model.

Tracks money movements initiated outside the regular user flows
(admin adjustments, provider webhooks) and ledger audits.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - CREDITS_ADJUSTED (admin credit/debit)
    - PURCHASE_COMPLETED / PURCHASE_DUPLICATE (payment webhook)
    - USER_PROVISIONED (identity webhook)
    - LEDGER_AUDITED / LEDGER_MISMATCH
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for provider/system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # Whose balance or account was affected
    target_user_id = Column(Integer, index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, target={self.target_user_id})>"
