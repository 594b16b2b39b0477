from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from classification import DreBucket, classify_dre, is_variable_cost
from errors import (
    ForecastAlreadyRealized,
    InvalidInput,
    NotFound,
)
from models import (
    CATEGORY_TYPE_FOR_KIND,
    BankAccount,
    Category,
    DeleteMode,
    Forecast,
    ImportBatch,
    KeywordRule,
    MovementKind,
    Resolution,
    RuleMatchType,
    Transaction,
)
from periods import Period
from recurrence import installment_suffix, local_today, plan_series
from reconciliation import ImportPlan, plan_import
from schemas import (
    BankAccountIn,
    CategoryIn,
    ForecastIn,
    ForecastUpdateIn,
    ImportCommitIn,
    KeywordRuleIn,
    StatementCandidate,
    TransactionIn,
)
from statement_utils import parse_ofx


logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


def get_current_account_id() -> int:
    return 1


def signed_cents(kind: MovementKind, amount_cents: int) -> int:
    return amount_cents if kind == MovementKind.credit else -amount_cents


def _signed_amount_expr():
    return case(
        (Transaction.kind == MovementKind.credit, Transaction.amount_cents),
        else_=-Transaction.amount_cents,
    )


def _check_references(
    session: Session,
    account_id: int,
    *,
    bank_account_id: int,
    category_id: Optional[int],
    kind: MovementKind,
) -> None:
    bank = session.get(BankAccount, bank_account_id)
    if not bank or bank.account_id != account_id:
        raise NotFound("Bank account not found")
    if category_id is None:
        return
    category = session.get(Category, category_id)
    if not category or category.account_id != account_id:
        raise NotFound("Category not found")
    if category.type != CATEGORY_TYPE_FOR_KIND[kind]:
        raise InvalidInput("Category type mismatch")


class CategoryService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.account_id == self.account_id)
            .order_by(Category.type, Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.account_id != self.account_id:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.account_id == self.account_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise InvalidInput("Category with this name already exists")
        category = Category(
            account_id=self.account_id, name=data.name.strip(), type=data.type
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, name: str) -> Category:
        category = self.get(category_id)
        clean = name.strip()
        if not clean:
            raise InvalidInput("Category name cannot be empty")
        category.name = clean
        self.session.commit()
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category.id
            )
        ) or self.session.scalar(
            select(func.count(Forecast.id)).where(Forecast.category_id == category.id)
        )
        if in_use:
            raise InvalidInput("Category is in use")
        self.session.delete(category)
        self.session.commit()


class BankAccountService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def list_all(self, include_inactive: bool = True) -> list[BankAccount]:
        stmt = (
            select(BankAccount)
            .where(BankAccount.account_id == self.account_id)
            .order_by(BankAccount.name)
        )
        if not include_inactive:
            stmt = stmt.where(BankAccount.active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, bank_account_id: int) -> BankAccount:
        bank = self.session.get(BankAccount, bank_account_id)
        if not bank or bank.account_id != self.account_id:
            raise NotFound("Bank account not found")
        return bank

    def create(self, data: BankAccountIn) -> BankAccount:
        bank = BankAccount(account_id=self.account_id, **data.model_dump())
        self.session.add(bank)
        self.session.commit()
        self.session.refresh(bank)
        return bank

    def update(self, bank_account_id: int, data: BankAccountIn) -> BankAccount:
        bank = self.get(bank_account_id)
        for field_name, value in data.model_dump().items():
            setattr(bank, field_name, value)
        self.session.commit()
        return bank

    def delete(self, bank_account_id: int) -> None:
        bank = self.get(bank_account_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.bank_account_id == bank.id
            )
        ) or self.session.scalar(
            select(func.count(Forecast.id)).where(Forecast.bank_account_id == bank.id)
        )
        if in_use:
            raise InvalidInput("Bank account has transactions or forecasts")
        self.session.delete(bank)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.account_id != self.account_id:
            raise NotFound("Transaction not found")
        return txn

    def list(
        self,
        period: Optional[Period] = None,
        *,
        bank_account_id: Optional[int] = None,
        query: Optional[str] = None,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.account_id == self.account_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if period:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        if bank_account_id:
            stmt = stmt.where(Transaction.bank_account_id == bank_account_id)
        if query:
            stmt = stmt.where(Transaction.description.ilike(f"%{query.strip()}%"))
        return self.session.scalars(stmt).all()

    def create(self, data: TransactionIn) -> Transaction:
        _check_references(
            self.session,
            self.account_id,
            bank_account_id=data.bank_account_id,
            category_id=data.category_id,
            kind=data.kind,
        )
        txn = Transaction(account_id=self.account_id, **data.model_dump())
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        _check_references(
            self.session,
            self.account_id,
            bank_account_id=data.bank_account_id,
            category_id=data.category_id,
            kind=data.kind,
        )
        for field_name, value in data.model_dump().items():
            setattr(txn, field_name, value)
        self.session.commit()
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def set_reconciled(self, transaction_id: int, reconciled: bool) -> Transaction:
        txn = self.get(transaction_id)
        txn.reconciled = reconciled
        self.session.commit()
        return txn

    def bulk_categorize(self, transaction_ids: Sequence[int], category_id: int) -> int:
        """Assign one category to many transactions and mark them reconciled."""
        category = CategoryService(self.session, self.account_id).get(category_id)
        kind = next(k for k, t in CATEGORY_TYPE_FOR_KIND.items() if t == category.type)
        ids = sorted(set(transaction_ids))
        if not ids:
            return 0
        txns = self.session.scalars(
            select(Transaction).where(
                Transaction.account_id == self.account_id, Transaction.id.in_(ids)
            )
        ).all()
        if len(txns) != len(ids):
            raise NotFound("Transaction not found")
        if any(t.kind != kind for t in txns):
            raise InvalidInput("Category type mismatch")
        result = self.session.execute(
            update(Transaction)
            .where(Transaction.account_id == self.account_id, Transaction.id.in_(ids))
            .values(category_id=category.id, reconciled=True)
        )
        self.session.commit()
        return result.rowcount or 0


class KeywordRuleService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def list_all(self) -> list[KeywordRule]:
        stmt = (
            select(KeywordRule)
            .options(joinedload(KeywordRule.category))
            .where(KeywordRule.account_id == self.account_id)
            .order_by(KeywordRule.priority.asc(), KeywordRule.id.asc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: KeywordRuleIn) -> KeywordRule:
        category = CategoryService(self.session, self.account_id).get(
            data.category_id
        )
        if data.kind and CATEGORY_TYPE_FOR_KIND[data.kind] != category.type:
            raise InvalidInput("Category type mismatch")
        if data.match_type == RuleMatchType.regex:
            try:
                re.compile(data.match_value)
            except re.error as exc:
                raise InvalidInput(f"Invalid regex: {exc}") from exc
        rule = KeywordRule(account_id=self.account_id, **data.model_dump())
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.session.get(KeywordRule, rule_id)
        if not rule or rule.account_id != self.account_id:
            raise NotFound("Rule not found")
        self.session.delete(rule)
        self.session.commit()

    def classify(
        self,
        description: str,
        kind: MovementKind,
        *,
        rules: Optional[Sequence[KeywordRule]] = None,
    ) -> Optional[int]:
        """Category id of the first enabled rule matching a statement line."""
        if rules is None:
            rules = [r for r in self.list_all() if r.enabled]
        text = (description or "").strip()
        text_lower = text.lower()
        for rule in rules:
            if rule.kind and rule.kind != kind:
                continue
            if rule.category and rule.category.type != CATEGORY_TYPE_FOR_KIND[kind]:
                continue
            needle = (rule.match_value or "").strip()
            if not needle:
                continue
            if rule.match_type == RuleMatchType.contains:
                matched = needle.lower() in text_lower
            elif rule.match_type == RuleMatchType.equals:
                matched = text_lower == needle.lower()
            elif rule.match_type == RuleMatchType.starts_with:
                matched = text_lower.startswith(needle.lower())
            else:
                try:
                    matched = re.search(needle, text, flags=re.IGNORECASE) is not None
                except re.error:
                    matched = False
            if matched:
                return rule.category_id
        return None


@dataclass(frozen=True)
class ForecastProjection:
    income_cents: int
    expense_cents: int
    balance_cents: int
    count: int


class ForecastService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def get(self, forecast_id: int) -> Forecast:
        forecast = self.session.get(Forecast, forecast_id)
        if not forecast or forecast.account_id != self.account_id:
            raise NotFound("Forecast not found")
        return forecast

    def list(
        self,
        period: Optional[Period] = None,
        *,
        bank_account_id: Optional[int] = None,
        include_realized: bool = True,
    ) -> list[Forecast]:
        stmt = (
            select(Forecast)
            .where(Forecast.account_id == self.account_id)
            .order_by(Forecast.date, Forecast.id)
        )
        if period:
            stmt = stmt.where(Forecast.date.between(period.start, period.end))
        if bank_account_id:
            stmt = stmt.where(Forecast.bank_account_id == bank_account_id)
        if not include_realized:
            stmt = stmt.where(Forecast.realized.is_(False))
        return self.session.scalars(stmt).all()

    def group_members(self, group_id: str) -> list[Forecast]:
        stmt = (
            select(Forecast)
            .where(Forecast.account_id == self.account_id, Forecast.group_id == group_id)
            .order_by(Forecast.installment_current)
        )
        members = self.session.scalars(stmt).all()
        if not members:
            raise NotFound("Recurrence group not found")
        return members

    def create(
        self,
        data: ForecastIn,
        *,
        today: Optional[date] = None,
        horizon: Optional[int] = None,
    ) -> list[Forecast]:
        """Expand one request into a standalone forecast or a monthly series."""
        _check_references(
            self.session,
            self.account_id,
            bank_account_id=data.bank_account_id,
            category_id=data.category_id,
            kind=data.kind,
        )
        start = data.date or today or local_today()
        plan = plan_series(start, data.installments, fixed=data.fixed, horizon=horizon)
        group_id = str(uuid.uuid4()) if plan.grouped else None

        forecasts = [
            self._build(data, occ.date, group_id, occ.installment, plan.installment_total)
            for occ in plan.occurrences
        ]
        try:
            self.session.add_all(forecasts)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"forecasts_created: account={self.account_id} group={group_id} "
            f"count={len(forecasts)} fixed={data.fixed}"
        )
        return forecasts

    def create_with_first_realized(
        self,
        data: ForecastIn,
        *,
        today: Optional[date] = None,
        horizon: Optional[int] = None,
    ) -> tuple[Transaction, list[Forecast]]:
        """Book the first occurrence as a transaction and plan the rest."""
        _check_references(
            self.session,
            self.account_id,
            bank_account_id=data.bank_account_id,
            category_id=data.category_id,
            kind=data.kind,
        )
        start = data.date or today or local_today()
        plan = plan_series(start, data.installments, fixed=data.fixed, horizon=horizon)
        group_id = str(uuid.uuid4()) if plan.grouped else None

        first, rest = plan.occurrences[0], plan.occurrences[1:]
        txn = Transaction(
            account_id=self.account_id,
            date=first.date,
            description=data.description
            + installment_suffix(group_id, first.installment, plan.installment_total),
            amount_cents=data.amount_cents,
            kind=data.kind,
            category_id=data.category_id,
            bank_account_id=data.bank_account_id,
            reconciled=False,
        )
        forecasts = [
            self._build(data, occ.date, group_id, occ.installment, plan.installment_total)
            for occ in rest
        ]
        try:
            self.session.add(txn)
            self.session.add_all(forecasts)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"forecasts_created: account={self.account_id} group={group_id} "
            f"count={len(forecasts)} first_realized_txn={txn.id}"
        )
        return txn, forecasts

    def _build(
        self,
        data: ForecastIn,
        on_date: date,
        group_id: Optional[str],
        installment: int,
        installment_total: Optional[int],
    ) -> Forecast:
        return Forecast(
            account_id=self.account_id,
            date=on_date,
            description=data.description,
            amount_cents=data.amount_cents,
            kind=data.kind,
            category_id=data.category_id,
            bank_account_id=data.bank_account_id,
            realized=False,
            installment_current=installment if group_id else None,
            installment_total=installment_total if group_id else None,
            group_id=group_id,
        )

    def update(self, forecast_id: int, data: ForecastUpdateIn) -> Forecast:
        forecast = self.get(forecast_id)
        if forecast.realized:
            raise ForecastAlreadyRealized("Realized forecasts cannot be edited")
        if forecast.group_id and data.date != forecast.date:
            # members stay one month apart; "future" deletion depends on it
            raise InvalidInput("Dates of recurrence group members cannot be changed")
        _check_references(
            self.session,
            self.account_id,
            bank_account_id=data.bank_account_id,
            category_id=data.category_id,
            kind=data.kind,
        )
        for field_name, value in data.model_dump().items():
            setattr(forecast, field_name, value)
        self.session.commit()
        return forecast

    def delete(self, forecast_id: int, mode: DeleteMode | str = DeleteMode.single) -> int:
        """Delete a forecast, or part of its recurrence group; returns rows removed."""
        try:
            mode = DeleteMode(mode)
        except ValueError as exc:
            raise InvalidInput(f"Unknown delete mode '{mode}'") from exc
        forecast = self.get(forecast_id)
        group_id = forecast.group_id

        try:
            if not group_id or mode == DeleteMode.single:
                self.session.delete(forecast)
                deleted = 1
            else:
                stmt = delete(Forecast).where(
                    Forecast.account_id == self.account_id,
                    Forecast.group_id == group_id,
                )
                if mode == DeleteMode.future:
                    stmt = stmt.where(Forecast.date >= forecast.date)
                deleted = self.session.execute(stmt).rowcount or 0
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"forecasts_deleted: account={self.account_id} forecast={forecast_id} "
            f"group={group_id} mode={mode.value} deleted={deleted}"
        )
        return deleted

    def monthly_projection(
        self, period: Period, *, bank_account_id: Optional[int] = None
    ) -> ForecastProjection:
        """Projected income, expense and balance of open forecasts in a period."""
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (Forecast.kind == MovementKind.credit, Forecast.amount_cents),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(
                func.sum(
                    case(
                        (Forecast.kind == MovementKind.debit, Forecast.amount_cents),
                        else_=0,
                    )
                ),
                0,
            ),
            func.count(Forecast.id),
        ).where(
            Forecast.account_id == self.account_id,
            Forecast.realized.is_(False),
            Forecast.date.between(period.start, period.end),
        )
        if bank_account_id:
            stmt = stmt.where(Forecast.bank_account_id == bank_account_id)
        income, expense, count = self.session.execute(stmt).one()
        return ForecastProjection(
            income_cents=int(income or 0),
            expense_cents=int(expense or 0),
            balance_cents=int(income or 0) - int(expense or 0),
            count=int(count or 0),
        )


class RealizationService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def realize(
        self,
        forecast_id: int,
        effective_date: Optional[date] = None,
        *,
        today: Optional[date] = None,
    ) -> Transaction:
        """Turn a forecast into a transaction dated when it actually happened."""
        forecast = ForecastService(self.session, self.account_id).get(forecast_id)
        if forecast.realized:
            raise ForecastAlreadyRealized("Forecast already realized")

        txn = Transaction(
            account_id=self.account_id,
            date=effective_date or today or local_today(),
            description=forecast.description
            + installment_suffix(
                forecast.group_id,
                forecast.installment_current,
                forecast.installment_total,
            ),
            amount_cents=forecast.amount_cents,
            kind=forecast.kind,
            category_id=forecast.category_id,
            bank_account_id=forecast.bank_account_id,
            reconciled=False,
        )
        forecast.realized = True
        try:
            self.session.add(txn)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(txn)
        logger.info(
            f"forecast_realized: account={self.account_id} forecast={forecast.id} "
            f"transaction={txn.id} date={txn.date.isoformat()}"
        )
        return txn


@dataclass(frozen=True)
class ImportResult:
    import_batch_id: Optional[int]
    inserted_count: int
    deleted_count: int

    @property
    def is_noop(self) -> bool:
        return self.import_batch_id is None


@dataclass
class StatementPreview:
    plan: ImportPlan
    errors: list[str] = field(default_factory=list)
    ignored: int = 0


class ImportService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def plan(
        self, bank_account_id: int, candidates: Sequence[StatementCandidate]
    ) -> ImportPlan:
        BankAccountService(self.session, self.account_id).get(bank_account_id)
        if any(c.bank_account_id != bank_account_id for c in candidates):
            raise InvalidInput("All candidates must target the import bank account")
        if not candidates:
            return ImportPlan()

        stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == self.account_id,
                Transaction.bank_account_id == bank_account_id,
                Transaction.date.between(
                    min(c.date for c in candidates), max(c.date for c in candidates)
                ),
            )
            .order_by(Transaction.id)
        )
        existing = self.session.scalars(stmt).all()
        plan = plan_import(candidates, existing)
        logger.info(
            f"import_planned: account={self.account_id} bank={bank_account_id} "
            f"clean={len(plan.clean)} conflicts={len(plan.conflicts)}"
        )
        return plan

    def preview_statement(
        self,
        content: str,
        bank_account_id: int,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> StatementPreview:
        """Parse an OFX statement, categorize it with keyword rules and plan it."""
        rows, errors, ignored = parse_ofx(content, start=start, end=end)
        rules_service = KeywordRuleService(self.session, self.account_id)
        rules = [r for r in rules_service.list_all() if r.enabled]
        candidates = [
            StatementCandidate(
                date=row.date,
                description=row.description,
                amount_cents=row.amount_cents,
                kind=row.kind,
                bank_account_id=bank_account_id,
                category_id=rules_service.classify(row.description, row.kind, rules=rules),
            )
            for row in rows
        ]
        plan = self.plan(bank_account_id, candidates)
        return StatementPreview(plan=plan, errors=errors, ignored=ignored)

    def commit(self, data: ImportCommitIn, *, now: Optional[datetime] = None) -> ImportResult:
        """Apply a resolved import plan as one unit of work.

        Clean rows are always inserted. A conflict resolved as ``replace``
        deletes the existing transaction and inserts the statement row; one
        kept as ``keep_existing`` changes nothing. An import batch is only
        recorded when at least one row is inserted.
        """
        BankAccountService(self.session, self.account_id).get(data.bank_account_id)
        replacing = [c for c in data.conflicts if c.resolution == Resolution.replace]
        to_insert = list(data.clean) + [c.candidate for c in replacing]
        if not to_insert:
            logger.info(
                f"import_commit_noop: account={self.account_id} "
                f"bank={data.bank_account_id} kept={len(data.conflicts)}"
            )
            return ImportResult(import_batch_id=None, inserted_count=0, deleted_count=0)

        try:
            to_delete: list[Transaction] = []
            seen: set[int] = set()
            for conflict in replacing:
                if conflict.existing_transaction_id in seen:
                    raise InvalidInput(
                        "A transaction can only be replaced by one statement row"
                    )
                seen.add(conflict.existing_transaction_id)
                existing = self.session.get(
                    Transaction, conflict.existing_transaction_id
                )
                if (
                    not existing
                    or existing.account_id != self.account_id
                    or existing.bank_account_id != data.bank_account_id
                ):
                    raise NotFound("Transaction not found")
                to_delete.append(existing)

            for candidate in to_insert:
                _check_references(
                    self.session,
                    self.account_id,
                    bank_account_id=candidate.bank_account_id,
                    category_id=candidate.category_id,
                    kind=candidate.kind,
                )

            batch = ImportBatch(
                account_id=self.account_id,
                file_name=data.file_name,
                imported_at=now or datetime.utcnow(),
                bank_account_id=data.bank_account_id,
                transaction_count=len(to_insert),
            )
            self.session.add(batch)
            self.session.flush()

            for existing in to_delete:
                self.session.delete(existing)
            for candidate in to_insert:
                self.session.add(
                    Transaction(
                        account_id=self.account_id,
                        date=candidate.date,
                        description=candidate.description,
                        amount_cents=candidate.amount_cents,
                        kind=candidate.kind,
                        category_id=candidate.category_id,
                        bank_account_id=candidate.bank_account_id,
                        reconciled=False,
                        import_batch_id=batch.id,
                    )
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"import_committed: account={self.account_id} batch={batch.id} "
            f"inserted={len(to_insert)} replaced={len(to_delete)}"
        )
        return ImportResult(
            import_batch_id=batch.id,
            inserted_count=len(to_insert),
            deleted_count=len(to_delete),
        )

    def list_batches(self) -> list[ImportBatch]:
        stmt = (
            select(ImportBatch)
            .where(ImportBatch.account_id == self.account_id)
            .order_by(ImportBatch.imported_at.desc(), ImportBatch.id.desc())
        )
        return self.session.scalars(stmt).all()

    def delete_batch(self, batch_id: int) -> int:
        """Delete an import batch and every transaction it produced."""
        batch = self.session.get(ImportBatch, batch_id)
        if not batch or batch.account_id != self.account_id:
            raise NotFound("Import batch not found")
        try:
            removed = (
                self.session.execute(
                    delete(Transaction).where(
                        Transaction.account_id == self.account_id,
                        Transaction.import_batch_id == batch.id,
                    )
                ).rowcount
                or 0
            )
            self.session.delete(batch)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"import_batch_deleted: account={self.account_id} batch={batch_id} "
            f"transactions={removed}"
        )
        return removed


@dataclass(frozen=True)
class CategoryTotal:
    name: str
    amount_cents: int


@dataclass(frozen=True)
class CashFlowReport:
    start: date
    end: date
    opening_balance_cents: int
    income_cents: int
    expense_cents: int
    closing_balance_cents: int
    income_by_category: list[CategoryTotal]
    expense_by_category: list[CategoryTotal]


@dataclass(frozen=True)
class IncomeStatement:
    start: date
    end: date
    gross_revenue_cents: int
    deductions_cents: int
    net_revenue_cents: int
    cost_of_goods_cents: int
    gross_profit_cents: int
    operating_expenses_cents: int
    operating_result_cents: int
    financial_result_cents: int
    non_operating_result_cents: int
    pre_tax_result_cents: int
    taxes_cents: int
    net_result_cents: int
    lines: dict[str, list[CategoryTotal]]


@dataclass(frozen=True)
class AnalysisReport:
    start: date
    end: date
    total_revenue_cents: int
    variable_costs_cents: int
    contribution_margin_cents: int
    contribution_margin_pct: float
    operating_result_pct: float
    net_result_pct: float


@dataclass(frozen=True)
class DailyFlowPoint:
    date: date
    income_cents: int
    expense_cents: int
    net_cents: int


@dataclass(frozen=True)
class LedgerSummary:
    balance_cents: int
    income_cents: int
    expense_cents: int
    reconciled_count: int
    pending_count: int


def _percent(value: int, total: int) -> float:
    if total == 0:
        return 0.0
    return value / total * 100


def _sorted_totals(totals: dict[str, int]) -> list[CategoryTotal]:
    items = sorted(totals.items(), key=lambda x: (-x[1], x[0]))
    return [CategoryTotal(name=name, amount_cents=amount) for name, amount in items]


class ReportService:
    """Read-only aggregates over reconciled transactions."""

    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id or get_current_account_id()

    def _scope(self, stmt, bank_account_id: Optional[int], *, reconciled_only=True):
        stmt = stmt.where(Transaction.account_id == self.account_id)
        if reconciled_only:
            stmt = stmt.where(Transaction.reconciled.is_(True))
        if bank_account_id:
            stmt = stmt.where(Transaction.bank_account_id == bank_account_id)
        return stmt

    def _totals_by_category(
        self, period: Period, bank_account_id: Optional[int]
    ) -> list[tuple[str, MovementKind, int]]:
        stmt = (
            select(
                Category.name,
                Transaction.kind,
                func.coalesce(func.sum(Transaction.amount_cents), 0),
            )
            .select_from(Transaction)
            .outerjoin(Category, Transaction.category_id == Category.id)
            .where(Transaction.date.between(period.start, period.end))
            .group_by(Category.name, Transaction.kind)
        )
        stmt = self._scope(stmt, bank_account_id)
        return [
            (name or UNCATEGORIZED, kind, int(total or 0))
            for name, kind, total in self.session.execute(stmt).all()
        ]

    def opening_balance(
        self, before: date, *, bank_account_id: Optional[int] = None
    ) -> int:
        stmt = select(func.coalesce(func.sum(_signed_amount_expr()), 0)).where(
            Transaction.date < before
        )
        stmt = self._scope(stmt, bank_account_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def cash_flow(
        self, period: Period, *, bank_account_id: Optional[int] = None
    ) -> CashFlowReport:
        opening = self.opening_balance(period.start, bank_account_id=bank_account_id)
        income: dict[str, int] = {}
        expense: dict[str, int] = {}
        for name, kind, total in self._totals_by_category(period, bank_account_id):
            target = income if kind == MovementKind.credit else expense
            target[name] = target.get(name, 0) + total
        income_total = sum(income.values())
        expense_total = sum(expense.values())
        return CashFlowReport(
            start=period.start,
            end=period.end,
            opening_balance_cents=opening,
            income_cents=income_total,
            expense_cents=expense_total,
            closing_balance_cents=opening + income_total - expense_total,
            income_by_category=_sorted_totals(income),
            expense_by_category=_sorted_totals(expense),
        )

    def income_statement(
        self, period: Period, *, bank_account_id: Optional[int] = None
    ) -> IncomeStatement:
        buckets: dict[DreBucket, int] = {bucket: 0 for bucket in DreBucket}
        lines: dict[DreBucket, dict[str, int]] = {bucket: {} for bucket in DreBucket}
        for name, kind, total in self._totals_by_category(period, bank_account_id):
            bucket = classify_dre(name, kind)
            if bucket in (DreBucket.financial, DreBucket.non_operating):
                amount = signed_cents(kind, total)
            else:
                amount = total
            buckets[bucket] += amount
            lines[bucket][name] = lines[bucket].get(name, 0) + amount

        gross = buckets[DreBucket.gross_revenue]
        net_revenue = gross - buckets[DreBucket.deductions]
        gross_profit = net_revenue - buckets[DreBucket.cost_of_goods]
        operating = gross_profit - buckets[DreBucket.operating_expenses]
        pre_tax = (
            operating + buckets[DreBucket.financial] + buckets[DreBucket.non_operating]
        )
        return IncomeStatement(
            start=period.start,
            end=period.end,
            gross_revenue_cents=gross,
            deductions_cents=buckets[DreBucket.deductions],
            net_revenue_cents=net_revenue,
            cost_of_goods_cents=buckets[DreBucket.cost_of_goods],
            gross_profit_cents=gross_profit,
            operating_expenses_cents=buckets[DreBucket.operating_expenses],
            operating_result_cents=operating,
            financial_result_cents=buckets[DreBucket.financial],
            non_operating_result_cents=buckets[DreBucket.non_operating],
            pre_tax_result_cents=pre_tax,
            taxes_cents=buckets[DreBucket.taxes],
            net_result_cents=pre_tax - buckets[DreBucket.taxes],
            lines={
                bucket.value: _sorted_totals(values)
                for bucket, values in lines.items()
                if values
            },
        )

    def analysis(
        self, period: Period, *, bank_account_id: Optional[int] = None
    ) -> AnalysisReport:
        revenue = 0
        variable = 0
        for name, kind, total in self._totals_by_category(period, bank_account_id):
            if kind == MovementKind.credit:
                revenue += total
            elif is_variable_cost(name, kind):
                variable += total
        dre = self.income_statement(period, bank_account_id=bank_account_id)
        margin = revenue - variable
        return AnalysisReport(
            start=period.start,
            end=period.end,
            total_revenue_cents=revenue,
            variable_costs_cents=variable,
            contribution_margin_cents=margin,
            contribution_margin_pct=_percent(margin, revenue),
            operating_result_pct=_percent(dre.operating_result_cents, revenue),
            net_result_pct=_percent(dre.net_result_cents, revenue),
        )

    def daily_flow(
        self, period: Period, *, bank_account_id: Optional[int] = None
    ) -> list[DailyFlowPoint]:
        income_expr = func.coalesce(
            func.sum(
                case(
                    (Transaction.kind == MovementKind.credit, Transaction.amount_cents),
                    else_=0,
                )
            ),
            0,
        )
        expense_expr = func.coalesce(
            func.sum(
                case(
                    (Transaction.kind == MovementKind.debit, Transaction.amount_cents),
                    else_=0,
                )
            ),
            0,
        )
        stmt = (
            select(Transaction.date, income_expr, expense_expr)
            .where(Transaction.date.between(period.start, period.end))
            .group_by(Transaction.date)
            .order_by(Transaction.date)
        )
        stmt = self._scope(stmt, bank_account_id)
        points = []
        for day, income, expense in self.session.execute(stmt).all():
            income = int(income or 0)
            expense = int(expense or 0)
            points.append(
                DailyFlowPoint(
                    date=day,
                    income_cents=income,
                    expense_cents=expense,
                    net_cents=income - expense,
                )
            )
        return points

    def summary(
        self,
        period: Optional[Period] = None,
        *,
        bank_account_id: Optional[int] = None,
    ) -> LedgerSummary:
        """Dashboard totals over every transaction, reconciled or not."""
        stmt = select(
            Transaction.kind,
            Transaction.reconciled,
            func.coalesce(func.sum(Transaction.amount_cents), 0),
            func.count(Transaction.id),
        ).group_by(Transaction.kind, Transaction.reconciled)
        if period:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        stmt = self._scope(stmt, bank_account_id, reconciled_only=False)

        income = expense = reconciled = pending = 0
        for kind, is_reconciled, total, count in self.session.execute(stmt).all():
            if kind == MovementKind.credit:
                income += int(total or 0)
            else:
                expense += int(total or 0)
            if is_reconciled:
                reconciled += int(count or 0)
            else:
                pending += int(count or 0)
        return LedgerSummary(
            balance_cents=income - expense,
            income_cents=income,
            expense_cents=expense,
            reconciled_count=reconciled,
            pending_count=pending,
        )
