from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional, Protocol, Sequence

from models import MovementKind, Resolution
from schemas import ResolvedConflictIn, StatementCandidate


class LedgerEntry(Protocol):
    id: int
    date: date
    amount_cents: int
    kind: MovementKind


MatchKey = tuple[date, int, MovementKind]


def match_key(entry: LedgerEntry | StatementCandidate) -> MatchKey:
    return (entry.date, entry.amount_cents, entry.kind)


@dataclass
class ImportConflict:
    candidate: StatementCandidate
    existing: LedgerEntry
    resolution: Resolution = Resolution.keep_existing

    def resolve(self, resolution: Optional[Resolution] = None) -> ResolvedConflictIn:
        return ResolvedConflictIn(
            candidate=self.candidate,
            existing_transaction_id=self.existing.id,
            resolution=resolution or self.resolution,
        )


@dataclass
class ImportPlan:
    clean: list[StatementCandidate] = field(default_factory=list)
    conflicts: list[ImportConflict] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.clean and not self.conflicts


def plan_import(
    candidates: Sequence[StatementCandidate], existing: Iterable[LedgerEntry]
) -> ImportPlan:
    """Split statement candidates into clean rows and probable duplicates.

    Matching is greedy and one-to-one: candidates are visited in input order
    and each claims the lowest-id existing entry with the same date, amount
    and movement kind. A claimed entry leaves the pool, so a bucket never
    reports more conflicts than min(candidates, existing) for its key.
    """
    pool: dict[MatchKey, list[LedgerEntry]] = {}
    for entry in sorted(existing, key=lambda e: e.id):
        pool.setdefault(match_key(entry), []).append(entry)

    plan = ImportPlan()
    for candidate in candidates:
        bucket = pool.get(match_key(candidate))
        if bucket:
            plan.conflicts.append(
                ImportConflict(candidate=candidate, existing=bucket.pop(0))
            )
        else:
            plan.clean.append(candidate)
    return plan
