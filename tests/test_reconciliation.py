from dataclasses import dataclass
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from errors import InvalidInput, NotFound
from models import (
    BankAccount,
    Category,
    CategoryType,
    ImportBatch,
    MovementKind,
    Resolution,
    RuleMatchType,
    Transaction,
)
from reconciliation import plan_import
from schemas import ImportCommitIn, KeywordRuleIn, StatementCandidate
from services import ImportService, KeywordRuleService


@dataclass
class _Entry:
    id: int
    date: date
    amount_cents: int
    kind: MovementKind


def _candidate(
    day: date,
    amount: int,
    kind: MovementKind = MovementKind.credit,
    description: str = "Linha",
    bank_account_id: int = 1,
) -> StatementCandidate:
    return StatementCandidate(
        date=day,
        description=description,
        amount_cents=amount,
        kind=kind,
        bank_account_id=bank_account_id,
    )


def test_plan_import_reports_one_conflict_per_existing_row():
    day = date(2024, 3, 1)
    existing = [_Entry(i, day, 5000, MovementKind.credit) for i in (3, 1, 2)]
    candidates = [_candidate(day, 5000) for _ in range(3)]

    plan = plan_import(candidates, existing)

    assert len(plan.conflicts) == 3
    assert plan.clean == []
    assert [c.existing.id for c in plan.conflicts] == [1, 2, 3]


def test_plan_import_never_overcounts_a_bucket():
    day = date(2024, 3, 1)
    existing = [_Entry(1, day, 5000, MovementKind.credit)]
    candidates = [_candidate(day, 5000) for _ in range(3)]

    plan = plan_import(candidates, existing)

    assert len(plan.conflicts) == 1
    assert len(plan.clean) == 2


def test_plan_import_requires_same_kind_and_amount():
    day = date(2024, 3, 1)
    existing = [
        _Entry(1, day, 5000, MovementKind.debit),
        _Entry(2, day, 4999, MovementKind.credit),
        _Entry(3, date(2024, 3, 2), 5000, MovementKind.credit),
    ]
    plan = plan_import([_candidate(day, 5000)], existing)

    assert plan.conflicts == []
    assert len(plan.clean) == 1
    assert not plan.is_empty


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _bank(session: Session, account_id: int = 1) -> BankAccount:
    bank = BankAccount(account_id=account_id, name="Conta PJ")
    session.add(bank)
    session.commit()
    return bank


def _existing(session: Session, bank: BankAccount, **kwargs) -> Transaction:
    values = dict(
        account_id=1,
        date=date(2024, 3, 1),
        description="Deposito",
        amount_cents=5000,
        kind=MovementKind.credit,
        bank_account_id=bank.id,
        reconciled=True,
    )
    values.update(kwargs)
    txn = Transaction(**values)
    session.add(txn)
    session.commit()
    return txn


def _transactions(session: Session) -> list[Transaction]:
    return session.scalars(select(Transaction).order_by(Transaction.id)).all()


def test_replace_conflict_example():
    with _session() as session:
        bank = _bank(session)
        original = _existing(session, bank)
        service = ImportService(session)

        plan = service.plan(
            bank.id,
            [_candidate(date(2024, 3, 1), 5000, description="X", bank_account_id=bank.id)],
        )
        assert plan.clean == []
        assert len(plan.conflicts) == 1
        assert plan.conflicts[0].existing.id == original.id

        result = service.commit(
            ImportCommitIn(
                bank_account_id=bank.id,
                file_name="extrato.ofx",
                conflicts=[plan.conflicts[0].resolve(Resolution.replace)],
            ),
            now=datetime(2024, 3, 5, 10, 0),
        )

        assert result.inserted_count == 1
        assert result.deleted_count == 1
        txns = _transactions(session)
        assert len(txns) == 1
        assert txns[0].date == date(2024, 3, 1)
        assert txns[0].amount_cents == 5000
        assert txns[0].kind == MovementKind.credit
        assert txns[0].description == "X"
        assert txns[0].reconciled is False
        assert txns[0].import_batch_id == result.import_batch_id


def test_commit_keep_existing_only_is_noop():
    with _session() as session:
        bank = _bank(session)
        _existing(session, bank)
        service = ImportService(session)
        plan = service.plan(
            bank.id, [_candidate(date(2024, 3, 1), 5000, bank_account_id=bank.id)]
        )

        result = service.commit(
            ImportCommitIn(
                bank_account_id=bank.id,
                file_name="extrato.ofx",
                conflicts=[c.resolve() for c in plan.conflicts],
            )
        )

        assert result.is_noop
        assert result.inserted_count == 0
        assert session.scalar(select(func.count(ImportBatch.id))) == 0
        assert [t.description for t in _transactions(session)] == ["Deposito"]


def test_commit_replace_all_keeps_every_candidate():
    with _session() as session:
        bank = _bank(session)
        day = date(2024, 4, 2)
        for kwargs in (
            {"amount_cents": 1000},
            {"amount_cents": 1000},
            {"amount_cents": 700, "kind": MovementKind.debit},
        ):
            _existing(session, bank, date=day, **kwargs)
        candidates = [
            _candidate(day, 1000, description="A", bank_account_id=bank.id),
            _candidate(day, 1000, description="B", bank_account_id=bank.id),
            _candidate(day, 700, MovementKind.debit, "C", bank.id),
            _candidate(day, 300, description="D", bank_account_id=bank.id),
        ]
        service = ImportService(session)
        plan = service.plan(bank.id, candidates)
        assert len(plan.conflicts) == 3
        assert len(plan.clean) == 1

        result = service.commit(
            ImportCommitIn(
                bank_account_id=bank.id,
                file_name="abril.ofx",
                clean=plan.clean,
                conflicts=[c.resolve(Resolution.replace) for c in plan.conflicts],
            )
        )

        txns = _transactions(session)
        assert len(txns) == 4
        assert all(t.import_batch_id == result.import_batch_id for t in txns)
        assert sorted(t.description for t in txns) == ["A", "B", "C", "D"]
        batch = session.get(ImportBatch, result.import_batch_id)
        assert batch.transaction_count == 4
        assert result.deleted_count == 3


def test_commit_rejects_foreign_existing_transaction_and_rolls_back():
    with _session() as session:
        bank = _bank(session)
        other_bank = _bank(session)
        foreign = _existing(session, other_bank)
        with pytest.raises(NotFound):
            ImportService(session).commit(
                ImportCommitIn(
                    bank_account_id=bank.id,
                    file_name="extrato.ofx",
                    clean=[_candidate(date(2024, 3, 2), 10, bank_account_id=bank.id)],
                    conflicts=[
                        {
                            "candidate": _candidate(
                                date(2024, 3, 1), 5000, bank_account_id=bank.id
                            ),
                            "existing_transaction_id": foreign.id,
                            "resolution": "replace",
                        }
                    ],
                )
            )
        assert [t.id for t in _transactions(session)] == [foreign.id]
        assert session.scalar(select(func.count(ImportBatch.id))) == 0


def test_commit_rejects_replacing_same_row_twice():
    with _session() as session:
        bank = _bank(session)
        original = _existing(session, bank)
        conflict = {
            "candidate": _candidate(date(2024, 3, 1), 5000, bank_account_id=bank.id),
            "existing_transaction_id": original.id,
            "resolution": "replace",
        }
        with pytest.raises(InvalidInput):
            ImportService(session).commit(
                ImportCommitIn(
                    bank_account_id=bank.id,
                    file_name="extrato.ofx",
                    conflicts=[conflict, conflict],
                )
            )
        assert [t.id for t in _transactions(session)] == [original.id]


def test_plan_is_scoped_to_bank_account():
    with _session() as session:
        bank = _bank(session)
        other_bank = _bank(session)
        _existing(session, other_bank)
        plan = ImportService(session).plan(
            bank.id, [_candidate(date(2024, 3, 1), 5000, bank_account_id=bank.id)]
        )
        assert plan.conflicts == []
        assert len(plan.clean) == 1


def test_delete_batch_removes_its_transactions():
    with _session() as session:
        bank = _bank(session)
        manual = _existing(session, bank, date=date(2024, 5, 1))
        service = ImportService(session)
        result = service.commit(
            ImportCommitIn(
                bank_account_id=bank.id,
                file_name="maio.ofx",
                clean=[
                    _candidate(date(2024, 5, 2), 100, bank_account_id=bank.id),
                    _candidate(date(2024, 5, 3), 200, bank_account_id=bank.id),
                ],
            )
        )
        assert [b.id for b in service.list_batches()] == [result.import_batch_id]

        assert service.delete_batch(result.import_batch_id) == 2
        assert [t.id for t in _transactions(session)] == [manual.id]
        assert service.list_batches() == []
        with pytest.raises(NotFound):
            service.delete_batch(result.import_batch_id)


OFX = """OFXHEADER:100
<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>
<STMTTRN><TRNTYPE>CREDIT<DTPOSTED>20240301120000[-3:BRT]<TRNAMT>50.00<MEMO>PIX RECEBIDO CLIENTE
</STMTTRN>
<STMTTRN><TRNTYPE>DEBIT<DTPOSTED>20240302<TRNAMT>-89.90<MEMO>TARIFA PACOTE SERVICOS
</STMTTRN>
</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>
"""


def test_preview_statement_classifies_and_plans():
    with _session() as session:
        bank = _bank(session)
        fees = Category(account_id=1, name="Tarifas bancarias", type=CategoryType.expense)
        session.add(fees)
        session.commit()
        KeywordRuleService(session).create(
            KeywordRuleIn(
                name="Tarifas",
                match_type=RuleMatchType.contains,
                match_value="tarifa",
                category_id=fees.id,
            )
        )
        _existing(session, bank)

        preview = ImportService(session).preview_statement(OFX, bank.id)

        assert preview.errors == []
        assert len(preview.plan.conflicts) == 1
        assert preview.plan.conflicts[0].candidate.description == "PIX RECEBIDO CLIENTE"
        (clean,) = preview.plan.clean
        assert clean.kind == MovementKind.debit
        assert clean.amount_cents == 8990
        assert clean.category_id == fees.id


def test_keyword_classifier_respects_priority_and_category_type():
    with _session() as session:
        income = Category(account_id=1, name="Vendas", type=CategoryType.income)
        services_cat = Category(account_id=1, name="Servicos", type=CategoryType.expense)
        misc = Category(account_id=1, name="Diversos", type=CategoryType.expense)
        session.add_all([income, services_cat, misc])
        session.commit()
        rules = KeywordRuleService(session)
        rules.create(
            KeywordRuleIn(
                name="Pix recebido",
                priority=1,
                match_type=RuleMatchType.starts_with,
                match_value="pix",
                kind=MovementKind.credit,
                category_id=income.id,
            )
        )
        rules.create(
            KeywordRuleIn(
                name="Qualquer pix",
                priority=5,
                match_type=RuleMatchType.regex,
                match_value=r"^pix\b",
                category_id=misc.id,
            )
        )
        rules.create(
            KeywordRuleIn(
                name="Servicos",
                priority=10,
                match_type=RuleMatchType.contains,
                match_value="servico",
                category_id=services_cat.id,
            )
        )

        assert rules.classify("PIX recebido fulano", MovementKind.credit) == income.id
        assert rules.classify("PIX enviado fulano", MovementKind.debit) == misc.id
        assert rules.classify("Pagamento servico", MovementKind.debit) == services_cat.id
        # no income category among the matching rules
        assert rules.classify("Pagamento servico", MovementKind.credit) is None

        with pytest.raises(InvalidInput):
            rules.create(
                KeywordRuleIn(
                    name="Quebrada",
                    match_type=RuleMatchType.regex,
                    match_value="(",
                    category_id=misc.id,
                )
            )
