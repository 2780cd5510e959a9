from datetime import date, datetime, timedelta
from dateutil.relativedelta import relativedelta, FR

from budgetcal.models import TransactionKind

DATE_KEY_FORMAT = "%Y-%m-%d"

SATURDAY = 5
SUNDAY = 6


def date_key(d: date) -> str:
    return d.strftime(DATE_KEY_FORMAT)


def parse_date_key(key: str) -> date:
    return datetime.strptime(key, DATE_KEY_FORMAT).date()


def next_friday(d: date) -> date:
    """First Friday strictly after d"""
    return d + relativedelta(days=+1, weekday=FR(+1))


def skip_weekend(d: date) -> date:
    """Move a Saturday or Sunday forward to the following Monday"""
    if d.weekday() == SATURDAY:
        return d + timedelta(days=2)
    if d.weekday() == SUNDAY:
        return d + timedelta(days=1)
    return d


def first_due_date(kind: TransactionKind, frequency: str, reference_date: date) -> date:
    """
    First occurrence of a rule, relative to reference_date.

    Combinations without a policy (weekly expenses, annual, one-time)
    return reference_date unchanged.
    """
    if frequency == "Monthly":
        first_of_next_month = reference_date + relativedelta(months=+1, day=1)
        if kind == "income":
            return first_of_next_month
        return skip_weekend(first_of_next_month)

    if frequency == "Weekly" and kind == "income":
        return next_friday(reference_date)

    if frequency == "Fortnightly":
        if kind == "income":
            return next_friday(reference_date)
        return skip_weekend(reference_date + timedelta(weeks=2))

    return reference_date
