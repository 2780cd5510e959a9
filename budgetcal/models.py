from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Literal


TransactionKind = Literal["income", "expense"]
Frequency = Literal["Weekly", "Fortnightly", "Monthly", "Annual", "One-time"]

FREQUENCIES: tuple[Frequency, ...] = ("Weekly", "Fortnightly", "Monthly", "Annual", "One-time")
KINDS: tuple[TransactionKind, ...] = ("income", "expense")


@dataclass(frozen=True)
class TransactionRule:
    id: str
    title: str
    frequency: Frequency
    amount: float
    kind: TransactionKind
    start_date: date
    next_due_date: Optional[date] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class CashFlowEvent:
    date: date
    amount: float
    kind: TransactionKind
    description: str
    source_rule_id: str


@dataclass(frozen=True)
class DayBalance:
    date: date
    balance: float
    daily_income: float
    daily_expenses: float
    events: tuple[CashFlowEvent, ...] = ()


@dataclass(frozen=True)
class ForwardDay:
    date: date
    events: tuple[CashFlowEvent, ...]
    daily_income: float
    daily_expenses: float
    daily_net: float
    starting_balance: float
    ending_balance: float


@dataclass(frozen=True)
class WeeklySummary:
    weekly_income: float
    weekly_expenses: float
    weekly_net: float
    monthly_savings: float


@dataclass(frozen=True)
class SkippedLine:
    line: int
    reason: str
    content: str


@dataclass
class ImportResult:
    rules: list[TransactionRule] = field(default_factory=list)
    skipped: list[SkippedLine] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.rules)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)
