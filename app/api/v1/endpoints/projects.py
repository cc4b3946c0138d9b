"""Project billing endpoints - invoice generation, profitability and exports"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.auth import Principal
from app.schemas.invoice import GenerateInvoiceRequest, InvoiceResponse
from app.schemas.responses import SuccessResponse
from app.services.billing_service import BillingService
from app.services.profitability_service import ProfitabilityService
from app.services.report_service import CsvRenderer, ReportService

router = APIRouter()


@router.post("/{project_id}/invoices", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def generate_invoice(
    project_id: UUID,
    request: GenerateInvoiceRequest,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
    billing: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """Draft an invoice from the project's unbilled work. billing_type must match the active contract."""
    invoice = await billing.generate_invoice(
        db,
        project_id,
        request.billing_type,
        include_expenses=request.include_expenses,
        custom_line_items=request.custom_line_items,
        force=request.force,
    )
    return SuccessResponse(data=InvoiceResponse.model_validate(invoice), message="Invoice drafted")


@router.get("/{project_id}/profitability", response_model=SuccessResponse)
async def get_profitability(
    project_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    metrics = await ProfitabilityService.compute(db, project_id)
    return SuccessResponse(data=metrics)


@router.get("/{project_id}/invoices/export")
async def export_invoices(
    project_id: UUID,
    current_user: Principal = Depends(deps.require_billing_admin),
    db: AsyncSession = Depends(deps.get_db),
) -> Response:
    renderer = CsvRenderer()
    content = await ReportService.export_project_invoices(db, project_id, renderer)
    return Response(
        content=content,
        media_type=renderer.content_type,
        headers={"Content-Disposition": f'attachment; filename="invoices-{project_id}.{renderer.file_extension}"'},
    )
