from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class MovementKind(str, Enum):
    credit = "credit"
    debit = "debit"


class CategoryType(str, Enum):
    income = "income"
    expense = "expense"


# Credits are booked against income categories, debits against expense ones.
CATEGORY_TYPE_FOR_KIND = {
    MovementKind.credit: CategoryType.income,
    MovementKind.debit: CategoryType.expense,
}


class RuleMatchType(str, Enum):
    contains = "contains"
    equals = "equals"
    starts_with = "starts_with"
    regex = "regex"


class DeleteMode(str, Enum):
    single = "single"
    future = "future"
    all = "all"


class Resolution(str, Enum):
    keep_existing = "keep_existing"
    replace = "replace"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "type", "name", name="uq_category_account_type_name"
        ),
    )


class BankAccount(Base, TimestampMixin):
    __tablename__ = "bank_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    account_number: Mapped[Optional[str]] = mapped_column(String(40))
    nickname: Mapped[Optional[str]] = mapped_column(String(80))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="bank_account"
    )


class ImportBatch(Base, TimestampMixin):
    __tablename__ = "import_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    imported_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    bank_account_id: Mapped[int] = mapped_column(
        ForeignKey("bank_accounts.id"), nullable=False
    )
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="import_batch",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_import_batches_account_imported", "account_id", "imported_at"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[MovementKind] = mapped_column(SAEnum(MovementKind), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    bank_account_id: Mapped[int] = mapped_column(
        ForeignKey("bank_accounts.id"), nullable=False
    )
    reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    import_batch_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("import_batches.id", ondelete="CASCADE")
    )

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    bank_account: Mapped["BankAccount"] = relationship(
        "BankAccount", back_populates="transactions"
    )
    import_batch: Mapped[Optional["ImportBatch"]] = relationship(
        "ImportBatch", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_account_date", "account_id", "date"),
        Index(
            "ix_transactions_account_bank_date", "account_id", "bank_account_id", "date"
        ),
        Index("ix_transactions_import_batch", "import_batch_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class Forecast(Base, TimestampMixin):
    __tablename__ = "forecasts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[MovementKind] = mapped_column(SAEnum(MovementKind), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    bank_account_id: Mapped[int] = mapped_column(
        ForeignKey("bank_accounts.id"), nullable=False
    )
    realized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    installment_current: Mapped[Optional[int]] = mapped_column(Integer)
    # 0 marks an open-ended fixed monthly series
    installment_total: Mapped[Optional[int]] = mapped_column(Integer)
    group_id: Mapped[Optional[str]] = mapped_column(String(36))

    category: Mapped[Optional["Category"]] = relationship("Category")
    bank_account: Mapped["BankAccount"] = relationship("BankAccount")

    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "group_id",
            "installment_current",
            name="uq_forecast_group_installment",
        ),
        Index("ix_forecasts_account_date", "account_id", "date"),
        Index("ix_forecasts_account_group", "account_id", "group_id"),
        CheckConstraint("amount_cents >= 0", name="ck_forecasts_amount_positive"),
        CheckConstraint(
            "installment_current IS NULL OR installment_current >= 1",
            name="ck_forecasts_installment_current_positive",
        ),
        CheckConstraint(
            "installment_total IS NULL OR installment_total >= 0",
            name="ck_forecasts_installment_total_non_negative",
        ),
    )

    @property
    def is_open_ended(self) -> bool:
        return self.group_id is not None and self.installment_total == 0


class KeywordRule(Base, TimestampMixin):
    __tablename__ = "keyword_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    match_type: Mapped[RuleMatchType] = mapped_column(
        SAEnum(RuleMatchType), nullable=False
    )
    match_value: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[Optional[MovementKind]] = mapped_column(SAEnum(MovementKind))
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        Index(
            "ix_keyword_rules_account_enabled_priority",
            "account_id",
            "enabled",
            "priority",
            "id",
        ),
    )
