"""
Admin API Schema Definitions.

Pydantic schemas for back-office credit, invoice and audit endpoints.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any


class CreditAdjustmentRequest(BaseModel):
    """Schema for a manual credit adjustment (negative amounts debit)."""
    amount: int = Field(..., description="Signed credit delta, must not be zero")
    reason: str = Field(..., min_length=3, max_length=200, description="Reason (stored on the ledger row and audit log)")


class CreditAdjustmentResponse(BaseModel):
    user_id: int
    amount: int
    balance: int
    transaction_id: int
    audit_log_id: int


class LedgerAuditResponse(BaseModel):
    """Result of a balance vs ledger reconciliation."""
    user_id: int
    balance: int
    ledger_sum: int
    consistent: bool


class InvoiceListItem(BaseModel):
    transaction_id: int
    invoice_number: str
    created_at: datetime
    user_id: int
    username: str
    email: str
    credits: int
    payment_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_provider: Optional[str] = None
    payment_id: Optional[str] = None


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceListItem]
    total: int
    limit: int
    offset: int


class InvoiceStatsResponse(BaseModel):
    year: Optional[int] = None
    invoice_count: int
    total_revenue: Decimal
    credits_sold: int


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    actor_id: Optional[int]
    actor_username: Optional[str]
    action: str
    target_user_id: Optional[int]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int
