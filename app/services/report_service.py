"""Report Service - tabular billing exports"""

import csv
import io
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import Invoice
from app.services.billing_service import BillingService
from app.services.invoice_lifecycle import paid_amount
from app.utils.money import quantize

INVOICE_REGISTER_COLUMNS = [
    "invoice_number",
    "status",
    "billing_type",
    "issue_date",
    "due_date",
    "currency",
    "subtotal",
    "discount",
    "tax",
    "total",
    "paid",
    "balance",
]


@dataclass
class ReportTable:
    title: str
    columns: List[str]
    rows: List[List[Any]] = field(default_factory=list)


class ReportRenderer(Protocol):
    content_type: str
    file_extension: str

    def render(self, table: ReportTable, options: Optional[Dict[str, Any]] = None) -> bytes:
        ...


class CsvRenderer:
    """RFC 4180 CSV with a header row. Options: ``delimiter``."""

    content_type = "text/csv"
    file_extension = "csv"

    def render(self, table: ReportTable, options: Optional[Dict[str, Any]] = None) -> bytes:
        options = options or {}
        buffer = io.StringIO()
        writer = csv.writer(buffer, delimiter=options.get("delimiter", ","), lineterminator="\r\n")
        writer.writerow(table.columns)
        for row in table.rows:
            writer.writerow(["" if value is None else str(value) for value in row])
        return buffer.getvalue().encode("utf-8")


class ReportService:
    @staticmethod
    def invoice_register(title: str, invoices: Iterable[Invoice]) -> ReportTable:
        table = ReportTable(title=title, columns=list(INVOICE_REGISTER_COLUMNS))
        for invoice in invoices:
            paid = paid_amount(invoice)
            table.rows.append([
                invoice.invoice_number,
                invoice.status.value,
                invoice.billing_type.value,
                invoice.issue_date.isoformat(),
                invoice.due_date.isoformat(),
                invoice.currency,
                quantize(invoice.subtotal),
                quantize(invoice.discount_amount),
                quantize(invoice.tax_amount),
                quantize(invoice.total),
                paid,
                quantize(invoice.total - paid),
            ])
        return table

    @staticmethod
    async def export_project_invoices(
        db: AsyncSession,
        project_id: UUID,
        renderer: ReportRenderer,
        options: Optional[Dict[str, Any]] = None,
    ) -> bytes:
        project = await BillingService.get_project(db, project_id)
        result = await db.execute(
            select(Invoice)
            .where(Invoice.project_id == project_id)
            .order_by(Invoice.issue_date, Invoice.invoice_number)
        )
        table = ReportService.invoice_register(f"Invoices - {project.name}", result.scalars().all())
        return renderer.render(table, options)
