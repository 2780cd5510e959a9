import logging
import math
import uuid
from collections import defaultdict
from datetime import date, timedelta
from dateutil.relativedelta import relativedelta
from typing import Callable, Iterable, Optional

from budgetcal.config import HORIZON_DAYS, MAX_OCCURRENCES, WEEKS_PER_MONTH
from budgetcal.dates import date_key, first_due_date
from budgetcal.models import (
    FREQUENCIES, KINDS, CashFlowEvent, DayBalance, ForwardDay, Frequency,
    TransactionKind, TransactionRule, WeeklySummary
)

logger = logging.getLogger(__name__)

# One-time rules (and unknown frequencies) have no step and emit a single event
FREQUENCY_STEPS = {
    "Weekly": relativedelta(weeks=1),
    "Fortnightly": relativedelta(weeks=2),
    "Monthly": relativedelta(months=1),
    "Annual": relativedelta(years=1),
}

WEEKLY_FACTORS = {
    "Weekly": 1.0,
    "Fortnightly": 1 / 2,
    "Monthly": 12 / 52,
    "Annual": 1 / 52,
    "One-time": 1 / 52,
}


# ===== RULES =====
def new_rule(
        title: str,
        frequency: Frequency,
        amount,
        kind: TransactionKind,
        start_date: Optional[date] = None,
        next_due_date: Optional[date] = None,
        category: Optional[str] = None,
        rule_id: Optional[str] = None,
) -> TransactionRule:
    """Validate manual input and build a rule. Nothing is created on bad input."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValueError(f"Amount must be a number, got {amount!r}") from None
    if not math.isfinite(value) or value <= 0:
        raise ValueError("Amount must be greater than zero")
    if kind not in KINDS:
        raise ValueError("Type must be 'income' or 'expense'")
    if frequency not in FREQUENCIES:
        raise ValueError(f"Frequency must be one of: {', '.join(FREQUENCIES)}")
    if not title or not title.strip():
        raise ValueError("Title cannot be empty")

    return TransactionRule(
        id=rule_id or uuid.uuid4().hex,
        title=title.strip(),
        frequency=frequency,
        amount=value,
        kind=kind,
        start_date=start_date or date.today(),
        next_due_date=next_due_date,
        category=category or None,
    )


# ===== EXPANSION =====
def first_occurrence(rule: TransactionRule) -> date:
    if rule.next_due_date is not None:
        return rule.next_due_date
    return first_due_date(rule.kind, rule.frequency, rule.start_date)


def expand_rule(rule: TransactionRule, horizon_end: date) -> list[CashFlowEvent]:
    step = FREQUENCY_STEPS.get(rule.frequency)
    events = []
    current = first_occurrence(rule)

    while current <= horizon_end and len(events) < MAX_OCCURRENCES:
        events.append(CashFlowEvent(
            date=current,
            amount=rule.amount,
            kind=rule.kind,
            description=rule.title,
            source_rule_id=rule.id,
        ))
        if step is None:
            break
        current = current + step

    if len(events) == MAX_OCCURRENCES and current <= horizon_end:
        logger.debug("Rule %s stopped at %d occurrences", rule.id, MAX_OCCURRENCES)
    return events


def expand(
        rules: Iterable[TransactionRule],
        horizon_end: Optional[date] = None,
        today: Optional[date] = None,
) -> list[CashFlowEvent]:
    """
    Turn rules into dated events up to horizon_end (default: one year from today).

    Events are grouped rule by rule in input order, so the result is not
    globally sorted by date.
    """
    if horizon_end is None:
        horizon_end = (today or date.today()) + relativedelta(years=1)

    events = []
    for rule in rules:
        events.extend(expand_rule(rule, horizon_end))
    return events


# ===== AGGREGATION =====
def split_totals(events: Iterable[CashFlowEvent]) -> tuple[float, float]:
    income = 0.0
    expense = 0.0
    for e in events:
        if e.kind == "income":
            income += e.amount
        else:
            expense += e.amount
    return income, expense


def aggregate(
        events: Iterable[CashFlowEvent],
        starting_balance: float = 0.0,
        horizon_start: Optional[date] = None,
        horizon_end: Optional[date] = None,
        today: Optional[date] = None,
) -> dict[str, DayBalance]:
    """
    Fold events into a running balance for every calendar day.

    The range starts at horizon_start (or the earliest event, or today when
    there are none) and ends at horizon_end (default: today + HORIZON_DAYS).
    Keys are YYYY-MM-DD strings in chronological order.
    """
    today = today or date.today()
    ordered = sorted(events, key=lambda e: e.date)

    if horizon_start is None:
        horizon_start = ordered[0].date if ordered else today
    if horizon_end is None:
        horizon_end = today + timedelta(days=HORIZON_DAYS)

    by_day = defaultdict(list)
    for e in ordered:
        by_day[e.date].append(e)

    balances = {}
    running = starting_balance
    c_date = horizon_start
    while c_date <= horizon_end:
        day_events = by_day.get(c_date, [])
        income, expense = split_totals(day_events)
        running += income - expense
        balances[date_key(c_date)] = DayBalance(
            date=c_date,
            balance=running,
            daily_income=income,
            daily_expenses=expense,
            events=tuple(day_events),
        )
        c_date += timedelta(days=1)

    return balances


# ===== FORWARD VIEW =====
def opening_balance(
        selected_date: date,
        balances: dict[str, DayBalance],
        current_balance: float,
        today: Optional[date] = None,
) -> float:
    if selected_date >= (today or date.today()):
        return current_balance
    day = balances.get(date_key(selected_date))
    return day.balance if day is not None else current_balance


def forward_view(
        selected_date: date,
        events: Iterable[CashFlowEvent],
        balances: dict[str, DayBalance],
        current_balance: float,
        today: Optional[date] = None,
) -> list[ForwardDay]:
    """Events from selected_date onwards, grouped by day with their own running balance."""
    upcoming = sorted((e for e in events if e.date >= selected_date), key=lambda e: e.date)

    groups = defaultdict(list)
    for e in upcoming:
        groups[e.date].append(e)

    running = opening_balance(selected_date, balances, current_balance, today)
    days = []
    for day, day_events in groups.items():
        income, expense = split_totals(day_events)
        start = running
        running += income - expense
        days.append(ForwardDay(
            date=day,
            events=tuple(day_events),
            daily_income=income,
            daily_expenses=expense,
            daily_net=income - expense,
            starting_balance=start,
            ending_balance=running,
        ))
    return days


def balance_on(
        selected_date: date,
        events: Iterable[CashFlowEvent],
        balances: dict[str, DayBalance],
        current_balance: float,
        today: Optional[date] = None,
) -> float:
    """End-of-day balance of selected_date as seen from the forward view"""
    days = forward_view(selected_date, events, balances, current_balance, today)
    if days and days[0].date == selected_date:
        return days[0].ending_balance
    return opening_balance(selected_date, balances, current_balance, today)


# ===== SUMMARIES =====
def weekly_equivalent(rule: TransactionRule) -> float:
    """
    Average weekly amount of a rule.

    Fortnightly rules count as half their amount per week. This is a
    deliberate departure from the older summary, which gave them a factor of 0.
    """
    return rule.amount * WEEKLY_FACTORS.get(rule.frequency, 0.0)


def weekly_summary(rules: Iterable[TransactionRule]) -> WeeklySummary:
    income = 0.0
    expense = 0.0
    for rule in rules:
        if rule.kind == "income":
            income += weekly_equivalent(rule)
        else:
            expense += weekly_equivalent(rule)

    net = income - expense
    return WeeklySummary(
        weekly_income=income,
        weekly_expenses=expense,
        weekly_net=net,
        monthly_savings=net * WEEKS_PER_MONTH,
    )


def current_projected_balance(balances: dict[str, DayBalance], today: Optional[date] = None) -> float:
    day = balances.get(date_key(today or date.today()))
    return day.balance if day is not None else 0.0


def period_breakdown(events: Iterable[CashFlowEvent], view: str = "weekly", today: Optional[date] = None):
    """
    Income/expense bars for the current week (one per day, weeks start on
    Sunday) or the current month (one per 7-day block from the 1st), plus
    expenses keyed by the first word of their description.
    """
    today = today or date.today()

    if view == "weekly":
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        end = start + timedelta(days=6)
    elif view == "monthly":
        start = today.replace(day=1)
        end = start + relativedelta(day=31)
    else:
        raise ValueError("View must be 'weekly' or 'monthly'")

    period_events = [e for e in events if start <= e.date <= end]

    bars = []
    if view == "weekly":
        for offset in range(7):
            day = start + timedelta(days=offset)
            income, expense = split_totals(e for e in period_events if e.date == day)
            bars.append({"name": day.strftime("%a"), "income": income, "expense": expense})
    else:
        total_weeks = math.ceil(end.day / 7)
        for week in range(total_weeks):
            week_start = start + timedelta(days=week * 7)
            week_end = week_start + timedelta(days=6)
            income, expense = split_totals(
                e for e in period_events if week_start <= e.date <= week_end
            )
            bars.append({"name": f"Week {week + 1}", "income": income, "expense": expense})

    by_category = {}
    for e in period_events:
        if e.kind != "expense":
            continue
        words = e.description.split(" ")
        category = words[0] or "Other"
        by_category[category] = by_category.get(category, 0.0) + e.amount

    return {
        "view": view,
        "start": start,
        "end": end,
        "bars": bars,
        "expenses_by_category": by_category,
    }


# ===== LIVE PROJECTION =====
class BudgetProjection:
    """
    Recomputes events and daily balances whenever the rule store changes.

    The balance map starts today, so past days are absent: day() returns None
    for them and opening_balance() falls back to the current balance.
    """

    def __init__(self, store, today: Callable[[], date] = date.today):
        self.store = store
        self._today = today
        self.events: list[CashFlowEvent] = []
        self.balances: dict[str, DayBalance] = {}
        store.subscribe(self.refresh)
        self.refresh()

    def refresh(self) -> None:
        today = self._today()
        events = expand(self.store.rules, today=today)
        balances = aggregate(
            events,
            starting_balance=self.store.current_balance,
            horizon_start=today,
            today=today,
        )
        self.events, self.balances = events, balances

    def day(self, d: date) -> Optional[DayBalance]:
        return self.balances.get(date_key(d))
