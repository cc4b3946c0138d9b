"""Integration tests: invoice generation, payments and refunds against PostgreSQL."""

from datetime import date
from decimal import Decimal

import pytest

from app.models.enums import TimeEntryStatus
from app.models.work import TimeEntry
from tests.conftest import requires_db

pytestmark = requires_db


async def _add_time(db_session, project, *hours):
    entries = [
        TimeEntry(
            project_id=project.id,
            user_name="Ana",
            description="Implementation",
            date=date(2026, 10, day + 1),
            hours=Decimal(h),
            billable=True,
            status=TimeEntryStatus.APPROVED,
        )
        for day, h in enumerate(hours)
    ]
    db_session.add_all(entries)
    await db_session.commit()
    return entries


async def _pay(async_client, headers, invoice_id, amount):
    return await async_client.post(
        f"/invoices/{invoice_id}/payments",
        headers=headers,
        json={"amount": amount, "currency": "USD", "payment_method": "BANK_TRANSFER"},
    )


@pytest.mark.asyncio
async def test_hourly_invoice_paid_in_two_installments(async_client, admin_headers, db_session, seed_project):
    project = await seed_project({"type": "HOURLY", "hourly_rate": "100"}, tax_rate=Decimal("10"))
    entries = await _add_time(db_session, project, "3", "5")

    resp = await async_client.post(
        f"/projects/{project.id}/invoices", headers=admin_headers, json={"billing_type": "HOURLY"}
    )
    assert resp.status_code == 201, resp.text
    invoice = resp.json()["data"]
    assert invoice["status"] == "DRAFT"
    assert Decimal(invoice["subtotal"]) == Decimal("800.00")
    assert Decimal(invoice["total"]) == Decimal("880.00")
    assert len(invoice["line_items"]) == 2

    # Same work is not billed twice while the draft exists
    again = await async_client.post(
        f"/projects/{project.id}/invoices", headers=admin_headers, json={"billing_type": "HOURLY"}
    )
    assert again.status_code == 409

    # A draft cannot be paid
    assert (await _pay(async_client, admin_headers, invoice["id"], "100")).status_code == 409

    resp = await async_client.post(f"/invoices/{invoice['id']}/send", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "SENT"

    assert (await _pay(async_client, admin_headers, invoice["id"], "900")).status_code == 422

    resp = await _pay(async_client, admin_headers, invoice["id"], "600")
    assert resp.status_code == 200, resp.text
    summary = (await async_client.get(f"/invoices/{invoice['id']}/payments/summary", headers=admin_headers)).json()
    assert summary["data"]["status"] == "PARTIAL"
    assert Decimal(summary["data"]["remaining_balance"]) == Decimal("280.00")

    resp = await _pay(async_client, admin_headers, invoice["id"], "280")
    assert resp.status_code == 200
    resp = await async_client.get(f"/invoices/{invoice['id']}", headers=admin_headers)
    assert resp.json()["data"]["status"] == "PAID"

    assert (await _pay(async_client, admin_headers, invoice["id"], "1")).status_code == 409

    for entry in entries:
        await db_session.refresh(entry)
        assert str(entry.invoice_id) == invoice["id"]
        assert entry.billed_at is not None

    resp = await async_client.get(f"/projects/{project.id}/profitability", headers=admin_headers)
    metrics = resp.json()["data"]
    assert Decimal(metrics["total_revenue"]) == Decimal("880.00")
    assert Decimal(metrics["total_hours"]) == Decimal("8.00")
    assert Decimal(metrics["hourly_rate"]) == Decimal("110.00")

    resp = await async_client.get(f"/projects/{project.id}/invoices/export", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.splitlines()
    assert lines[0].startswith("invoice_number,status,")
    assert lines[1].startswith(f"{invoice['invoice_number']},PAID,HOURLY,")


@pytest.mark.asyncio
async def test_fixed_fee_billed_once_unless_forced(async_client, admin_headers, seed_project):
    project = await seed_project({"type": "FIXED_FEE", "fixed_amount": "5000"})
    url = f"/projects/{project.id}/invoices"

    first = await async_client.post(url, headers=admin_headers, json={"billing_type": "FIXED_FEE"})
    assert first.status_code == 201
    assert Decimal(first.json()["data"]["total"]) == Decimal("5000.00")

    second = await async_client.post(url, headers=admin_headers, json={"billing_type": "FIXED_FEE"})
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "INVALID_INVOICE_STATE"

    forced = await async_client.post(url, headers=admin_headers, json={"billing_type": "FIXED_FEE", "force": True})
    assert forced.status_code == 201

    # Cancelling the first invoice frees its fee for a new invoice
    resp = await async_client.post(
        f"/invoices/{first.json()['data']['id']}/cancel", headers=admin_headers, json={"reason": "Wrong PO"}
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_billing_type_must_match_contract(async_client, admin_headers, seed_project):
    project = await seed_project({"type": "HOURLY", "hourly_rate": "100"})
    resp = await async_client.post(
        f"/projects/{project.id}/invoices", headers=admin_headers, json={"billing_type": "FIXED_FEE"}
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "BILLING_CONFIGURATION_ERROR"


@pytest.mark.asyncio
async def test_refund_is_idempotent(async_client, admin_headers, seed_project):
    project = await seed_project({"type": "FIXED_FEE", "fixed_amount": "1000"})
    invoice = (await async_client.post(
        f"/projects/{project.id}/invoices", headers=admin_headers, json={"billing_type": "FIXED_FEE"}
    )).json()["data"]
    await async_client.post(f"/invoices/{invoice['id']}/send", headers=admin_headers)
    payment = (await _pay(async_client, admin_headers, invoice["id"], "1000")).json()["data"]

    refund_url = f"/payments/{payment['payment_id']}/refund"
    body = {"amount": "250", "reason": "Scope reduced"}
    first = await async_client.post(refund_url, headers=admin_headers, json=body)
    assert first.status_code == 200, first.text
    repeat = await async_client.post(refund_url, headers=admin_headers, json=body)
    assert repeat.status_code == 200
    assert repeat.json()["data"]["payment_id"] == first.json()["data"]["payment_id"]

    too_much = await async_client.post(refund_url, headers=admin_headers, json={"amount": "750.01"})
    assert too_much.status_code == 422

    summary = (await async_client.get(f"/invoices/{invoice['id']}/payments/summary", headers=admin_headers)).json()
    assert Decimal(summary["data"]["paid_amount"]) == Decimal("750.00")


@pytest.mark.asyncio
async def test_unknown_project(async_client, admin_headers, db_session):
    resp = await async_client.post(
        "/projects/00000000-0000-0000-0000-000000000000/invoices",
        headers=admin_headers,
        json={"billing_type": "HOURLY"},
    )
    assert resp.status_code == 404
