"""Category-name heuristics behind the income statement and KPI analysis.

Categories are free-form names chosen by each account, so statement lines are
bucketed by case-insensitive substring matches against fixed keyword lists.
Rules are checked in order and the first hit wins; anything unmatched falls
back to gross revenue (credits) or operating expenses (debits).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models import MovementKind


class DreBucket(str, Enum):
    gross_revenue = "gross_revenue"
    deductions = "deductions"
    cost_of_goods = "cost_of_goods"
    operating_expenses = "operating_expenses"
    financial = "financial"
    non_operating = "non_operating"
    taxes = "taxes"


@dataclass(frozen=True)
class KeywordRule:
    bucket: DreBucket
    keywords: tuple[str, ...]
    kinds: frozenset[MovementKind]


_BOTH = frozenset({MovementKind.credit, MovementKind.debit})
_DEBIT = frozenset({MovementKind.debit})

DRE_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        DreBucket.non_operating,
        (
            "não operacion",
            "nao operacion",
            "imobilizado",
            "venda de ativo",
            "baixas contábeis",
            "baixas contabeis",
        ),
        _BOTH,
    ),
    KeywordRule(
        DreBucket.taxes,
        ("imposto", "taxa", "tributo", "irpj", "csll"),
        _DEBIT,
    ),
    KeywordRule(
        DreBucket.financial,
        (
            "financeir",
            "juros",
            "rendimento",
            "aplicaç",
            "aplicac",
            "tarifa",
            "iof",
        ),
        _BOTH,
    ),
    KeywordRule(
        DreBucket.deductions,
        (
            "dedução",
            "deducao",
            "deduções",
            "deducoes",
            "devolução de venda",
            "devolucao de venda",
            "devoluções de venda",
            "devolucoes de venda",
            "desconto concedido",
            "descontos concedidos",
        ),
        _DEBIT,
    ),
    KeywordRule(
        DreBucket.cost_of_goods,
        (
            "mercadoria",
            "matéria-prima",
            "materia-prima",
            "matéria prima",
            "materia prima",
            "frete",
            "fornecedor",
            "insumo",
            "cmv",
        ),
        _DEBIT,
    ),
)

VARIABLE_COST_KEYWORDS: tuple[str, ...] = (
    "mercadoria",
    "matéria-prima",
    "materia-prima",
    "matéria prima",
    "materia prima",
    "insumo",
    "frete",
    "comiss",
    "embalage",
)


def _contains_any(name: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in name for keyword in keywords)


def classify_dre(category_name: Optional[str], kind: MovementKind) -> DreBucket:
    name = (category_name or "").strip().lower()
    if name:
        for rule in DRE_RULES:
            if kind in rule.kinds and _contains_any(name, rule.keywords):
                return rule.bucket
    if kind == MovementKind.credit:
        return DreBucket.gross_revenue
    return DreBucket.operating_expenses


def is_variable_cost(category_name: Optional[str], kind: MovementKind) -> bool:
    if kind != MovementKind.debit:
        return False
    name = (category_name or "").strip().lower()
    return bool(name) and _contains_any(name, VARIABLE_COST_KEYWORDS)
