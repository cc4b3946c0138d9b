"""collections: late fees, payment reminders, atomic invoice numbering

Revision ID: 0002_collections
Revises: 0001_billing_schema
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_collections"
down_revision = "0001_billing_schema"
branch_labels = None
depends_on = None


REMINDER_TYPES = ("BEFORE_DUE", "ON_DUE_DATE", "OVERDUE_1ST", "OVERDUE_2ND", "OVERDUE_FINAL")


def timestamps():
    return [
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    postgresql.ENUM(*REMINDER_TYPES, name="reminder_type").create(bind, checkfirst=True)

    op.create_table(
        "invoice_number_sequences",
        sa.Column("period", sa.String(6), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("period"),
    )
    # Continue each month's numbering from the invoices already issued
    op.execute(
        """
        INSERT INTO invoice_number_sequences (period, last_value)
        SELECT substring(invoice_number FROM '-([0-9]{6})-[0-9]+$'),
               max(substring(invoice_number FROM '-([0-9]+)$')::integer)
        FROM invoices
        WHERE invoice_number ~ '-[0-9]{6}-[0-9]+$'
        GROUP BY 1
        """
    )

    op.add_column("billing_contracts", sa.Column("late_fee_percentage", sa.Numeric(5, 2), nullable=True))
    op.add_column("billing_contracts", sa.Column("late_fee_flat_amount", sa.Numeric(12, 2), nullable=True))
    op.add_column("billing_contracts", sa.Column("late_fee_max_amount", sa.Numeric(12, 2), nullable=True))
    op.add_column(
        "billing_contracts",
        sa.Column("late_fee_grace_days", sa.Integer(), nullable=False, server_default="0"),
    )
    op.add_column(
        "invoices",
        sa.Column("late_fee_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
    )

    op.create_table(
        "late_fees",
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("flat_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("days_past_due", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("applied_at", sa.DateTime(), nullable=False),
        sa.Column("waived", sa.Boolean(), nullable=False),
        sa.Column("waived_at", sa.DateTime(), nullable=True),
        sa.Column("waived_by", sa.String(255), nullable=True),
        sa.Column("waive_reason", sa.Text(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_late_fees_id"), "late_fees", ["id"])
    op.create_index(op.f("ix_late_fees_invoice_id"), "late_fees", ["invoice_id"])
    op.create_index(op.f("ix_late_fees_waived"), "late_fees", ["waived"])

    op.create_table(
        "payment_reminders",
        sa.Column("invoice_id", sa.UUID(), nullable=False),
        sa.Column(
            "reminder_type",
            postgresql.ENUM(*REMINDER_TYPES, name="reminder_type", create_type=False),
            nullable=False,
        ),
        sa.Column("recipient", sa.String(255), nullable=True),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payment_reminders_id"), "payment_reminders", ["id"])
    op.create_index(op.f("ix_payment_reminders_invoice_id"), "payment_reminders", ["invoice_id"])
    op.create_index(op.f("ix_payment_reminders_delivered"), "payment_reminders", ["delivered"])


def downgrade() -> None:
    op.drop_table("payment_reminders")
    op.drop_table("late_fees")
    op.drop_column("invoices", "late_fee_amount")
    for column in ("late_fee_grace_days", "late_fee_max_amount", "late_fee_flat_amount", "late_fee_percentage"):
        op.drop_column("billing_contracts", column)
    op.drop_table("invoice_number_sequences")
    postgresql.ENUM(name="reminder_type").drop(op.get_bind(), checkfirst=True)
