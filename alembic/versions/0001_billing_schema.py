"""billing schema: clients, projects, tracked work, contracts, invoices, payments

Revision ID: 0001_billing_schema
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_billing_schema"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "project_status": ("PROPOSAL", "ACTIVE", "ON_HOLD", "COMPLETED", "CANCELLED"),
    "billing_type": ("HOURLY", "FIXED_FEE", "MILESTONE_BASED", "RETAINER", "SUBSCRIPTION", "MIXED"),
    "billing_cycle": ("WEEKLY", "MONTHLY", "QUARTERLY", "YEARLY", "ONE_TIME"),
    "time_entry_status": ("DRAFT", "PENDING", "APPROVED", "REJECTED"),
    "milestone_status": ("PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED"),
    "expense_category": ("TRAVEL", "MEALS", "OFFICE", "SOFTWARE", "HARDWARE", "SERVICES", "OTHER"),
    "invoice_status": ("DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED"),
    "line_item_type": ("time_entry", "expense", "milestone", "flat_fee", "subscription_period"),
    "payment_method": ("STRIPE", "PAYPAL", "BANK_TRANSFER", "CHECK", "WIRE_TRANSFER", "CASH"),
    "payment_status": ("COMPLETED", "FAILED", "PARTIALLY_REFUNDED", "REFUNDED"),
    "refund_status": ("COMPLETED", "FAILED"),
}


def enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def timestamps():
    return [
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def billed_columns():
    return [
        sa.Column("invoice_id", sa.UUID(), nullable=True),
        sa.Column("billed_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "clients",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_clients_id"), "clients", ["id"])
    op.create_index(op.f("ix_clients_email"), "clients", ["email"])
    op.create_index(op.f("ix_clients_is_active"), "clients", ["is_active"])

    op.create_table(
        "projects",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", enum("project_status"), nullable=False),
        sa.Column("budget", sa.Numeric(12, 2), nullable=True),
        sa.Column("client_id", sa.UUID(), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_projects_id"), "projects", ["id"])
    op.create_index(op.f("ix_projects_client_id"), "projects", ["client_id"])
    op.create_index(op.f("ix_projects_status"), "projects", ["status"])

    op.create_table(
        "billing_contracts",
        sa.Column("billing_type", enum("billing_type"), nullable=False),
        sa.Column("billing_model", postgresql.JSONB(), nullable=False),
        sa.Column("auto_invoice", sa.Boolean(), nullable=False),
        sa.Column("billing_cycle", enum("billing_cycle"), nullable=False),
        sa.Column("payment_terms_days", sa.Integer(), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("discount_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("project_id", sa.UUID(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_billing_contracts_id"), "billing_contracts", ["id"])
    op.create_index(op.f("ix_billing_contracts_project_id"), "billing_contracts", ["project_id"])
    op.create_index(op.f("ix_billing_contracts_billing_type"), "billing_contracts", ["billing_type"])
    op.create_index(op.f("ix_billing_contracts_is_active"), "billing_contracts", ["is_active"])

    op.create_table(
        "invoices",
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("status", enum("invoice_status"), nullable=False),
        sa.Column("billing_type", enum("billing_type"), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.UUID(), nullable=False),
        sa.Column("project_id", sa.UUID(), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_invoices_id"), "invoices", ["id"])
    op.create_index(op.f("ix_invoices_invoice_number"), "invoices", ["invoice_number"], unique=True)
    op.create_index(op.f("ix_invoices_status"), "invoices", ["status"])
    op.create_index(op.f("ix_invoices_due_date"), "invoices", ["due_date"])
    op.create_index(op.f("ix_invoices_client_id"), "invoices", ["client_id"])
    op.create_index(op.f("ix_invoices_project_id"), "invoices", ["project_id"])

    op.create_table(
        "invoice_line_items",
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("type", enum("line_item_type"), nullable=False),
        sa.Column("reference_id", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_invoice_line_items_id"), "invoice_line_items", ["id"])
    op.create_index(op.f("ix_invoice_line_items_invoice_id"), "invoice_line_items", ["invoice_id"])
    op.create_index(op.f("ix_invoice_line_items_reference_id"), "invoice_line_items", ["reference_id"])

    op.create_table(
        "time_entries",
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("hours", sa.Numeric(8, 2), nullable=False),
        sa.Column("billable", sa.Boolean(), nullable=False),
        sa.Column("status", enum("time_entry_status"), nullable=False),
        sa.Column("project_id", sa.UUID(), nullable=False),
        *billed_columns(),
        *timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_time_entries_id"), "time_entries", ["id"])
    op.create_index(op.f("ix_time_entries_project_id"), "time_entries", ["project_id"])
    op.create_index(op.f("ix_time_entries_invoice_id"), "time_entries", ["invoice_id"])
    op.create_index(op.f("ix_time_entries_date"), "time_entries", ["date"])
    op.create_index(op.f("ix_time_entries_status"), "time_entries", ["status"])

    op.create_table(
        "expenses",
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category", enum("expense_category"), nullable=False),
        sa.Column("billable", sa.Boolean(), nullable=False),
        sa.Column("project_id", sa.UUID(), nullable=False),
        *billed_columns(),
        *timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_expenses_id"), "expenses", ["id"])
    op.create_index(op.f("ix_expenses_project_id"), "expenses", ["project_id"])
    op.create_index(op.f("ix_expenses_invoice_id"), "expenses", ["invoice_id"])
    op.create_index(op.f("ix_expenses_date"), "expenses", ["date"])

    op.create_table(
        "milestones",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_date", sa.Date(), nullable=True),
        sa.Column("status", enum("milestone_status"), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("project_id", sa.UUID(), nullable=False),
        *billed_columns(),
        *timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_milestones_id"), "milestones", ["id"])
    op.create_index(op.f("ix_milestones_project_id"), "milestones", ["project_id"])
    op.create_index(op.f("ix_milestones_invoice_id"), "milestones", ["invoice_id"])
    op.create_index(op.f("ix_milestones_status"), "milestones", ["status"])

    op.create_table(
        "payments",
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_method", enum("payment_method"), nullable=False),
        sa.Column("status", enum("payment_status"), nullable=False),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("transaction_id", sa.String(255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        sa.Column("refunded_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payments_id"), "payments", ["id"])
    op.create_index(op.f("ix_payments_invoice_id"), "payments", ["invoice_id"])
    op.create_index(op.f("ix_payments_status"), "payments", ["status"])
    op.create_index(op.f("ix_payments_external_id"), "payments", ["external_id"])

    op.create_table(
        "refunds",
        sa.Column("payment_id", sa.UUID(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", enum("refund_status"), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index(op.f("ix_refunds_id"), "refunds", ["id"])
    op.create_index(op.f("ix_refunds_payment_id"), "refunds", ["payment_id"])


def downgrade() -> None:
    for table in (
        "refunds",
        "payments",
        "milestones",
        "expenses",
        "time_entries",
        "invoice_line_items",
        "invoices",
        "billing_contracts",
        "projects",
        "clients",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
