import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import CategoryType, MovementKind, Resolution, RuleMatchType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: CategoryType


class BankAccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    account_number: Optional[str] = Field(default=None, max_length=40)
    nickname: Optional[str] = Field(default=None, max_length=80)
    active: bool = True


class TransactionIn(BaseModel):
    date: date
    description: str = Field(..., min_length=1, max_length=255)
    amount_cents: int = Field(..., ge=0)
    kind: MovementKind
    category_id: Optional[int] = None
    bank_account_id: int
    reconciled: bool = False


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    description: str
    amount_cents: int
    kind: MovementKind
    category_id: Optional[int]
    bank_account_id: int
    reconciled: bool
    import_batch_id: Optional[int]


class ForecastIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    amount_cents: int = Field(..., ge=0)
    kind: MovementKind
    bank_account_id: int
    category_id: Optional[int] = None
    date: Optional[dt.date] = None
    installments: int = Field(default=1, ge=1)
    fixed: bool = False


class ForecastUpdateIn(BaseModel):
    date: date
    description: str = Field(..., min_length=1, max_length=255)
    amount_cents: int = Field(..., ge=0)
    kind: MovementKind
    bank_account_id: int
    category_id: Optional[int] = None


class ForecastOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    description: str
    amount_cents: int
    kind: MovementKind
    category_id: Optional[int]
    bank_account_id: int
    realized: bool
    installment_current: Optional[int]
    installment_total: Optional[int]
    group_id: Optional[str]


class RealizeIn(BaseModel):
    effective_date: Optional[dt.date] = None


class StatementCandidate(BaseModel):
    date: date
    description: str = Field(..., min_length=1, max_length=255)
    amount_cents: int = Field(..., ge=0)
    kind: MovementKind
    bank_account_id: int
    category_id: Optional[int] = None


class ResolvedConflictIn(BaseModel):
    candidate: StatementCandidate
    existing_transaction_id: int
    resolution: Resolution = Resolution.keep_existing


class ImportPlanIn(BaseModel):
    bank_account_id: int
    candidates: list[StatementCandidate]


class ImportCommitIn(BaseModel):
    bank_account_id: int
    file_name: str = Field(..., min_length=1, max_length=255)
    clean: list[StatementCandidate] = Field(default_factory=list)
    conflicts: list[ResolvedConflictIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def _single_bank_account(self) -> "ImportCommitIn":
        rows = list(self.clean) + [c.candidate for c in self.conflicts]
        for row in rows:
            if row.bank_account_id != self.bank_account_id:
                raise ValueError("All candidates must target the import bank account")
        return self


class ImportBatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    file_name: str
    imported_at: datetime
    bank_account_id: int
    transaction_count: int


class KeywordRuleIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    enabled: bool = True
    priority: int = Field(default=100, ge=0, le=10_000)
    match_type: RuleMatchType = RuleMatchType.contains
    match_value: str = Field(..., min_length=1, max_length=200)
    kind: Optional[MovementKind] = None
    category_id: int


class CategoryRenameIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
