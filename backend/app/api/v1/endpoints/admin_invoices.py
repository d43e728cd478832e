"""
Admin Invoice API Endpoints.

Accounting views over numbered purchases.
"""

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.app.db.session import get_db
from backend.app.core.guards import require_role
from backend.app.domain.credits.invoice_service import InvoiceService
from backend.app.models.enums import UserRole
from backend.app.schemas.admin import InvoiceListItem, InvoiceListResponse, InvoiceStatsResponse

router = APIRouter(prefix="/admin/invoices", tags=["Admin - Invoices"])


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    year: Optional[int] = Query(None, ge=2000, le=9999),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    List invoices, latest number first.
    """
    rows, total = await InvoiceService.list_invoices(db, year=year, limit=limit, offset=offset)
    return InvoiceListResponse(
        invoices=[
            InvoiceListItem(
                transaction_id=t.id,
                invoice_number=t.invoice_number,
                created_at=t.created_at,
                user_id=t.user_id,
                username=username,
                email=email,
                credits=t.amount,
                payment_amount=t.payment_amount,
                currency=t.currency,
                payment_provider=t.payment_provider,
                payment_id=t.payment_id,
            )
            for t, username, email in rows
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=InvoiceStatsResponse)
async def invoice_stats(
    year: Optional[int] = Query(None, ge=2000, le=9999),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Invoice count, revenue and credits sold.
    """
    return InvoiceStatsResponse(**await InvoiceService.invoice_stats(db, year=year))


@router.get("/{transaction_id}/html", response_class=HTMLResponse)
async def invoice_html(
    transaction_id: int = Path(..., description="Purchase transaction ID"),
    language: str = Query("fr", pattern="^(fr|en)$"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Render any customer's invoice.
    """
    return HTMLResponse(content=await InvoiceService.invoice_for_admin(db, transaction_id, language))
