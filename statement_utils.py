import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from models import MovementKind

_BLOCK_SPLIT = re.compile(r"<STMTTRN>", re.IGNORECASE)
_DATE_RE = re.compile(r"<DTPOSTED>\s*(\d{8})", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"<TRNAMT>\s*([-+]?[\d.,]+)", re.IGNORECASE)
_MEMO_RE = re.compile(r"<MEMO>([^\r\n<]*)", re.IGNORECASE)
_NAME_RE = re.compile(r"<NAME>([^\r\n<]*)", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedStatementRow:
    date: date
    description: str
    amount_cents: int
    kind: MovementKind


def parse_amount(value: str) -> int:
    """Signed cents from an OFX amount ("-12.50", "1.234,56")."""
    clean = value.strip().replace(" ", "")
    if "," in clean and "." in clean:
        clean = clean.replace(".", "").replace(",", ".")
    else:
        clean = clean.replace(",", ".")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return int((amount * 100).quantize(Decimal("1")))


def parse_ofx_date(value: str) -> date:
    return datetime.strptime(value[:8], "%Y%m%d").date()


def parse_ofx(
    content: str,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> tuple[list[ParsedStatementRow], list[str], int]:
    """Extract statement lines from an OFX (SGML or XML) document.

    Returns the parsed rows, per-block error messages and the number of rows
    ignored because they fall outside ``start``/``end``.
    """
    rows: list[ParsedStatementRow] = []
    errors: list[str] = []
    ignored = 0
    blocks = _BLOCK_SPLIT.split(content)[1:]
    for idx, block in enumerate(blocks, start=1):
        date_match = _DATE_RE.search(block)
        amount_match = _AMOUNT_RE.search(block)
        memo_match = _MEMO_RE.search(block) or _NAME_RE.search(block)
        if not (date_match and amount_match and memo_match):
            errors.append(f"Entry {idx}: missing DTPOSTED, TRNAMT or MEMO")
            continue
        try:
            posted = parse_ofx_date(date_match.group(1))
            signed_cents = parse_amount(amount_match.group(1))
        except ValueError as exc:
            errors.append(f"Entry {idx}: {exc}")
            continue
        description = memo_match.group(1).strip()
        if not description:
            errors.append(f"Entry {idx}: empty description")
            continue

        if (start and posted < start) or (end and posted > end):
            ignored += 1
            continue

        kind = MovementKind.debit if signed_cents < 0 else MovementKind.credit
        rows.append(
            ParsedStatementRow(
                date=posted,
                description=description[:255],
                amount_cents=abs(signed_cents),
                kind=kind,
            )
        )
    return rows, errors, ignored
