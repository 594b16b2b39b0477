"""initial bookkeeping schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def _movement_kind() -> sa.Enum:
    return sa.Enum("credit", "debit", name="movementkind")


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "account_id", "type", "name", name="uq_category_account_type_name"
        ),
    )

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("account_number", sa.String(length=40), nullable=True),
        sa.Column("nickname", sa.String(length=80), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "import_batches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("imported_at", sa.DateTime(), nullable=False),
        sa.Column(
            "bank_account_id",
            sa.Integer(),
            sa.ForeignKey("bank_accounts.id"),
            nullable=False,
        ),
        sa.Column(
            "transaction_count", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_import_batches_account_imported",
        "import_batches",
        ["account_id", "imported_at"],
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("kind", _movement_kind(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True
        ),
        sa.Column(
            "bank_account_id",
            sa.Integer(),
            sa.ForeignKey("bank_accounts.id"),
            nullable=False,
        ),
        sa.Column(
            "reconciled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "import_batch_id",
            sa.Integer(),
            sa.ForeignKey("import_batches.id", ondelete="CASCADE"),
            nullable=True,
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index(
        "ix_transactions_account_date", "transactions", ["account_id", "date"]
    )
    op.create_index(
        "ix_transactions_account_bank_date",
        "transactions",
        ["account_id", "bank_account_id", "date"],
    )
    op.create_index(
        "ix_transactions_import_batch", "transactions", ["import_batch_id"]
    )

    op.create_table(
        "forecasts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("kind", _movement_kind(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True
        ),
        sa.Column(
            "bank_account_id",
            sa.Integer(),
            sa.ForeignKey("bank_accounts.id"),
            nullable=False,
        ),
        sa.Column("realized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("installment_current", sa.Integer(), nullable=True),
        sa.Column("installment_total", sa.Integer(), nullable=True),
        sa.Column("group_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "account_id",
            "group_id",
            "installment_current",
            name="uq_forecast_group_installment",
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_forecasts_amount_positive"),
        sa.CheckConstraint(
            "installment_current IS NULL OR installment_current >= 1",
            name="ck_forecasts_installment_current_positive",
        ),
        sa.CheckConstraint(
            "installment_total IS NULL OR installment_total >= 0",
            name="ck_forecasts_installment_total_non_negative",
        ),
    )
    op.create_index("ix_forecasts_account_date", "forecasts", ["account_id", "date"])
    op.create_index(
        "ix_forecasts_account_group", "forecasts", ["account_id", "group_id"]
    )

    op.create_table(
        "keyword_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column(
            "match_type",
            sa.Enum("contains", "equals", "starts_with", "regex", name="rulematchtype"),
            nullable=False,
        ),
        sa.Column("match_value", sa.String(length=200), nullable=False),
        sa.Column("kind", _movement_kind(), nullable=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_keyword_rules_account_enabled_priority",
        "keyword_rules",
        ["account_id", "enabled", "priority", "id"],
    )


def downgrade() -> None:
    op.drop_index("ix_keyword_rules_account_enabled_priority", table_name="keyword_rules")
    op.drop_table("keyword_rules")
    op.drop_index("ix_forecasts_account_group", table_name="forecasts")
    op.drop_index("ix_forecasts_account_date", table_name="forecasts")
    op.drop_table("forecasts")
    op.drop_index("ix_transactions_import_batch", table_name="transactions")
    op.drop_index("ix_transactions_account_bank_date", table_name="transactions")
    op.drop_index("ix_transactions_account_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_import_batches_account_imported", table_name="import_batches")
    op.drop_table("import_batches")
    op.drop_table("bank_accounts")
    op.drop_table("categories")
