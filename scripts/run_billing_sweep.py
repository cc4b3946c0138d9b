#!/usr/bin/env python3
"""
Run the scheduled billing sweeps once: draft invoices for recurring
contracts whose next period has started, flag past-due invoices, charge
late fees on them and send the payment reminders due today.

Usage:
  python scripts/run_billing_sweep.py            # every sweep
  python scripts/run_billing_sweep.py --recurring
  python scripts/run_billing_sweep.py --overdue
  python scripts/run_billing_sweep.py --late-fees
  python scripts/run_billing_sweep.py --reminders
  # Reads DATABASE_URL / SECRET_KEY from .env (or the environment)

Meant to be triggered by cron or a scheduler once a day.
"""
import argparse
import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import settings
from app.core.logging import get_logger, setup_logging
from app.database import close_db, session_scope
from app.services.billing_service import BillingService
from app.services.gateways.base import build_gateway_registry
from app.services.invoice_lifecycle import InvoiceLifecycleManager
from app.services.late_fee_service import LateFeeService
from app.services.reminder_service import ReminderService

logger = get_logger("billing_sweep")


async def run(recurring: bool, overdue: bool, late_fees: bool, reminders: bool) -> int:
    lifecycle = InvoiceLifecycleManager(build_gateway_registry(settings))
    billing = BillingService(lifecycle)
    drafted, flagged, fees, sent = [], [], [], []
    try:
        if recurring:
            async with session_scope() as db:
                drafted = await billing.generate_recurring_invoices(db)
        if overdue:
            async with session_scope() as db:
                flagged = await lifecycle.mark_overdue_invoices(db)
        # Fees before reminders so the notices quote the new balance
        if late_fees:
            async with session_scope() as db:
                fees = await LateFeeService(lifecycle).apply_late_fees(db)
        if reminders:
            async with session_scope() as db:
                sent = await ReminderService().process_reminders(db)
    finally:
        await close_db()

    for invoice in drafted:
        print(f"drafted  {invoice.invoice_number}  {invoice.total} {invoice.currency}")
    for invoice in flagged:
        print(f"overdue  {invoice.invoice_number}  due {invoice.due_date.isoformat()}")
    for fee in fees:
        print(f"late fee {fee.invoice_id}  {fee.amount}  {fee.days_past_due} days past due")
    for reminder in sent:
        state = "sent" if reminder.delivered else f"failed: {reminder.error}"
        print(f"reminder {reminder.invoice_id}  {reminder.reminder_type.value}  {state}")
    print(
        f"{len(drafted)} invoice(s) drafted, {len(flagged)} marked overdue, "
        f"{len(fees)} late fee(s) applied, {sum(1 for r in sent if r.delivered)} reminder(s) sent"
    )
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run billing sweeps once")
    parser.add_argument("--recurring", action="store_true", help="only draft recurring invoices")
    parser.add_argument("--overdue", action="store_true", help="only flag overdue invoices")
    parser.add_argument("--late-fees", action="store_true", help="only charge late fees")
    parser.add_argument("--reminders", action="store_true", help="only send payment reminders")
    args = parser.parse_args()

    run_all = not (args.recurring or args.overdue or args.late_fees or args.reminders)
    setup_logging()
    logger.info("Billing sweep started", extra={"environment": settings.ENVIRONMENT})
    sys.exit(asyncio.run(run(
        args.recurring or run_all,
        args.overdue or run_all,
        args.late_fees or run_all,
        args.reminders or run_all,
    )))


if __name__ == "__main__":
    main()
