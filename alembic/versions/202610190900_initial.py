"""expenses, instances and app settings

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


RECURRENCE = sa.Enum(
    "none", "weekly", "monthly", "yearly", "custom", name="recurrencetype"
)
CATEGORY = sa.Enum(
    "bills",
    "subscriptions",
    "rent",
    "insurance",
    "utilities",
    "entertainment",
    "transportation",
    "healthcare",
    "other",
    name="expensecategory",
)
STATUS = sa.Enum(
    "pending", "paid", "overdue", "snoozed", "skipped", name="instancestatus"
)


def upgrade():
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("first_due_date", sa.Date(), nullable=False),
        sa.Column("recurrence", RECURRENCE, nullable=False),
        sa.Column("custom_recurrence_days", sa.Integer()),
        sa.Column("category", CATEGORY, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_expense_amount_positive"),
        sa.CheckConstraint(
            "(recurrence = 'custom' AND custom_recurrence_days > 0)"
            " OR (recurrence != 'custom' AND custom_recurrence_days IS NULL)",
            name="ck_expense_custom_days",
        ),
    )

    op.create_table(
        "expense_instances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", STATUS, nullable=False, server_default="pending"),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("snoozed_until", sa.Date()),
        sa.Column("skipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("expense_id", "due_date", name="uq_instance_expense_due"),
        sa.CheckConstraint("status != 'overdue'", name="ck_instance_status_stored"),
    )
    op.create_index("ix_instances_due_date", "expense_instances", ["due_date"])

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "theme",
            sa.Enum("light", "dark", "system", name="theme"),
            nullable=False,
            server_default="system",
        ),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("language", sa.String(length=10), nullable=False),
        sa.Column(
            "notifications_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "notification_days_before",
            sa.Integer(),
            nullable=False,
            server_default="3",
        ),
        sa.Column("notification_channels_json", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("app_settings")
    op.drop_index("ix_instances_due_date", table_name="expense_instances")
    op.drop_table("expense_instances")
    op.drop_table("expenses")
