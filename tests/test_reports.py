from datetime import date
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from classification import DreBucket, classify_dre, is_variable_cost
from database import Base
from models import BankAccount, Category, CategoryType, MovementKind, Transaction
from periods import Period, resolve_period
from services import CategoryTotal, ReportService


JANUARY = Period("custom", date(2024, 1, 1), date(2024, 1, 31))

C = MovementKind.credit
D = MovementKind.debit


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _ledger(session: Session) -> BankAccount:
    bank = BankAccount(account_id=1, name="Conta PJ")
    session.add(bank)
    names = {
        "Vendas": CategoryType.income,
        "Rendimentos aplicação": CategoryType.income,
        "Devolução de vendas": CategoryType.expense,
        "Mercadorias": CategoryType.expense,
        "Comissões": CategoryType.expense,
        "Aluguel": CategoryType.expense,
        "Tarifas bancárias": CategoryType.expense,
        "Impostos": CategoryType.expense,
    }
    cats = {name: Category(account_id=1, name=name, type=t) for name, t in names.items()}
    session.add_all(cats.values())
    session.flush()

    def add(day: date, amount: int, kind: MovementKind, category: Optional[str], reconciled=True):
        session.add(
            Transaction(
                account_id=1,
                date=day,
                description=category or "Sem categoria",
                amount_cents=amount,
                kind=kind,
                category_id=cats[category].id if category else None,
                bank_account_id=bank.id,
                reconciled=reconciled,
            )
        )

    add(date(2023, 12, 20), 10000, C, "Vendas")
    add(date(2023, 12, 21), 4000, D, "Aluguel")
    add(date(2023, 12, 22), 1234, D, "Aluguel", reconciled=False)

    add(date(2024, 1, 5), 100000, C, "Vendas")
    add(date(2024, 1, 5), 20000, D, "Aluguel")
    add(date(2024, 1, 6), 99999, C, "Vendas", reconciled=False)
    add(date(2024, 1, 10), 5000, D, "Devolução de vendas")
    add(date(2024, 1, 10), 30000, D, "Mercadorias")
    add(date(2024, 1, 15), 6000, D, "Comissões")
    add(date(2024, 1, 20), 50000, C, "Vendas")
    add(date(2024, 1, 20), 500, D, "Tarifas bancárias")
    add(date(2024, 1, 25), 9000, D, "Impostos")
    add(date(2024, 1, 31), 2000, C, "Rendimentos aplicação")
    add(date(2024, 1, 31), 700, D, None)
    session.commit()
    return bank


def test_classify_dre_keyword_table():
    assert classify_dre("Vendas de Mercadorias", C) == DreBucket.gross_revenue
    assert classify_dre("Compra de mercadorias", D) == DreBucket.cost_of_goods
    assert classify_dre("Juros recebidos", C) == DreBucket.financial
    assert classify_dre("IOF", D) == DreBucket.financial
    assert classify_dre("Impostos sobre vendas", D) == DreBucket.taxes
    assert classify_dre("Impostos restituídos", C) == DreBucket.gross_revenue
    assert classify_dre("Venda de ativo imobilizado", C) == DreBucket.non_operating
    assert classify_dre("Descontos concedidos", D) == DreBucket.deductions
    assert classify_dre(None, D) == DreBucket.operating_expenses
    assert is_variable_cost("Frete de entrega", D)
    assert not is_variable_cost("Frete recebido", C)
    assert not is_variable_cost("Aluguel", D)


def test_cash_flow_only_counts_reconciled_transactions():
    with _session() as session:
        _ledger(session)
        report = ReportService(session).cash_flow(JANUARY)

        assert report.opening_balance_cents == 6000
        assert report.income_cents == 152000
        assert report.expense_cents == 71200
        assert report.closing_balance_cents == 86800
        assert report.income_by_category == [
            CategoryTotal("Vendas", 150000),
            CategoryTotal("Rendimentos aplicação", 2000),
        ]
        assert CategoryTotal("Uncategorized", 700) in report.expense_by_category


@pytest.mark.parametrize(
    "start,end",
    [
        (date(2023, 1, 1), date(2023, 12, 31)),
        (date(2023, 12, 21), date(2024, 1, 10)),
        (date(2024, 1, 11), date(2024, 1, 11)),
        (date(2024, 1, 20), date(2025, 1, 1)),
    ],
)
def test_cash_flow_closing_balance_identity(start, end):
    with _session() as session:
        _ledger(session)
        report = ReportService(session).cash_flow(Period("custom", start, end))
        assert report.closing_balance_cents == (
            report.opening_balance_cents + report.income_cents - report.expense_cents
        )


def test_income_statement_subtotals():
    with _session() as session:
        _ledger(session)
        dre = ReportService(session).income_statement(JANUARY)

        assert dre.gross_revenue_cents == 150000
        assert dre.deductions_cents == 5000
        assert dre.net_revenue_cents == 145000
        assert dre.cost_of_goods_cents == 30000
        assert dre.gross_profit_cents == 115000
        assert dre.operating_expenses_cents == 26700
        assert dre.operating_result_cents == 88300
        assert dre.financial_result_cents == 1500
        assert dre.non_operating_result_cents == 0
        assert dre.pre_tax_result_cents == 89800
        assert dre.taxes_cents == 9000
        assert dre.net_result_cents == 80800
        assert dre.lines["financial"] == [
            CategoryTotal("Rendimentos aplicação", 2000),
            CategoryTotal("Tarifas bancárias", -500),
        ]


def test_analysis_percentages():
    with _session() as session:
        _ledger(session)
        kpis = ReportService(session).analysis(JANUARY)

        assert kpis.total_revenue_cents == 152000
        assert kpis.variable_costs_cents == 36000
        assert kpis.contribution_margin_cents == 116000
        assert kpis.contribution_margin_pct == pytest.approx(116000 / 152000 * 100)
        assert kpis.operating_result_pct == pytest.approx(88300 / 152000 * 100)
        assert kpis.net_result_pct == pytest.approx(80800 / 152000 * 100)


def test_analysis_without_revenue_reports_zero_percentages():
    with _session() as session:
        _ledger(session)
        kpis = ReportService(session).analysis(
            Period("custom", date(2024, 6, 1), date(2024, 6, 30))
        )
        assert kpis.total_revenue_cents == 0
        assert kpis.contribution_margin_pct == 0.0
        assert kpis.operating_result_pct == 0.0
        assert kpis.net_result_pct == 0.0


def test_daily_flow_lists_days_with_activity():
    with _session() as session:
        _ledger(session)
        points = ReportService(session).daily_flow(JANUARY)

        assert [(p.date.day, p.income_cents, p.expense_cents) for p in points] == [
            (5, 100000, 20000),
            (10, 0, 35000),
            (15, 0, 6000),
            (20, 50000, 500),
            (25, 0, 9000),
            (31, 2000, 700),
        ]
        assert points[0].net_cents == 80000


def test_summary_counts_pending_transactions():
    with _session() as session:
        _ledger(session)
        summary = ReportService(session).summary(JANUARY)

        assert summary.income_cents == 251999
        assert summary.expense_cents == 71200
        assert summary.balance_cents == 251999 - 71200
        assert summary.reconciled_count == 10
        assert summary.pending_count == 1


def test_default_period_includes_future_dated_rows():
    with _session() as session:
        bank = _ledger(session)
        session.add(
            Transaction(
                account_id=1,
                date=date(2099, 1, 1),
                description="Vendas",
                amount_cents=3000,
                kind=C,
                bank_account_id=bank.id,
                reconciled=True,
            )
        )
        session.commit()

        period = resolve_period(None, None, None, today=date(2024, 2, 1))
        reports = ReportService(session)
        assert reports.cash_flow(period).income_cents == 162000 + 3000
        summary = reports.summary(period)
        assert summary.reconciled_count == 13
        assert summary.pending_count == 2


def test_reports_are_scoped_to_account_and_bank():
    with _session() as session:
        bank = _ledger(session)
        savings = BankAccount(account_id=1, name="Poupança")
        foreign_bank = BankAccount(account_id=2, name="Outra empresa")
        session.add_all([savings, foreign_bank])
        session.flush()
        session.add_all(
            [
                Transaction(
                    account_id=1,
                    date=date(2024, 1, 8),
                    description="Transferência",
                    amount_cents=7777,
                    kind=C,
                    bank_account_id=savings.id,
                    reconciled=True,
                ),
                Transaction(
                    account_id=2,
                    date=date(2024, 1, 8),
                    description="Outra empresa",
                    amount_cents=5555,
                    kind=C,
                    bank_account_id=foreign_bank.id,
                    reconciled=True,
                ),
            ]
        )
        session.commit()

        reports = ReportService(session)
        assert reports.cash_flow(JANUARY).income_cents == 152000 + 7777
        assert reports.cash_flow(JANUARY, bank_account_id=bank.id).income_cents == 152000
        assert reports.cash_flow(JANUARY, bank_account_id=savings.id).income_cents == 7777
        assert ReportService(session, account_id=2).cash_flow(JANUARY).income_cents == 5555
