"""Load transaction rules from a budget spreadsheet exported as CSV.

Each usable line is ``title, frequency, amount[, ...]``. Lines that cannot be
turned into a rule are skipped and reported instead of aborting the import.
"""

import csv
import logging
import math
import re
import uuid
from datetime import date
from pathlib import Path
from typing import Optional

from budgetcal.dates import first_due_date
from budgetcal.models import Frequency, ImportResult, SkippedLine, TransactionKind, TransactionRule

logger = logging.getLogger(__name__)

HEADER_MARKERS = ("household", "expenditure", "introduction")
CURRENCY_CHARS = re.compile(r"[£$€,]")

# Checked in order; the first match wins
FREQUENCY_PATTERNS: list[tuple[tuple[str, ...], Frequency]] = [
    (("week",), "Weekly"),
    (("fortnight", "bi-week"), "Fortnightly"),
    (("month",), "Monthly"),
    (("annual", "year"), "Annual"),
    (("one", "once"), "One-time"),
]

EXPENSE_KEYWORDS = (
    "pocket money", "childrens", "children", "mortgage payment protection",
    "pension contribution", "repair and maintenance", "maintenance", "gifts",
    "voluntary contribution", "membership", "school fees", "college fees",
    "school uniform", "school books", "college books", "nct", "insurance",
)
INCOME_KEYWORDS = (
    "income", "earnings", "salary", "wage", "benefit", "payment", "pension",
    "allowance", "grant", "boarders", "lodgers", "welfare",
)


class CSVImportError(ValueError):
    pass


def normalize_frequency(value: str) -> Optional[Frequency]:
    text = value.strip().lower()
    for needles, frequency in FREQUENCY_PATTERNS:
        if any(n in text for n in needles):
            return frequency
    return None


def infer_kind(title: str) -> TransactionKind:
    """Guess income/expense from the title. Expense keywords take precedence."""
    text = title.lower()
    if any(k in text for k in EXPENSE_KEYWORDS):
        return "expense"
    if any(k in text for k in INCOME_KEYWORDS):
        return "income"
    return "expense"


def parse_amount(value: str) -> Optional[float]:
    try:
        amount = float(CURRENCY_CHARS.sub("", value))
    except ValueError:
        return None
    return amount if math.isfinite(amount) else None


def split_line(line: str) -> list[str]:
    """Split one CSV line, honouring quoted fields and doubled quotes"""
    fields = next(csv.reader([line], skipinitialspace=True), [])
    return [f.strip() for f in fields]


def parse_csv(text: str, today: Optional[date] = None) -> ImportResult:
    today = today or date.today()
    result = ImportResult()

    for line_no, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line:
            continue

        def skip(reason):
            logger.debug("Line %d skipped: %s (%r)", line_no, reason, line)
            result.skipped.append(SkippedLine(line_no, reason, line))

        parts = split_line(line)
        if len(parts) < 3:
            skip("Insufficient data (less than 3 columns)")
            continue

        title, frequency_str, amount_str = parts[0], parts[1], parts[2]
        lowered = title.lower()
        if not frequency_str or frequency_str == "Frequency" or any(m in lowered for m in HEADER_MARKERS):
            skip("Header/title row detected")
            continue

        amount = parse_amount(amount_str)
        if amount is None:
            skip(f'Invalid amount: "{amount_str}"')
            continue
        if amount == 0:
            skip(f'Zero amount skipped: "{amount_str}"')
            continue

        frequency = normalize_frequency(frequency_str)
        if frequency is None:
            skip(f'Invalid frequency: "{frequency_str}"')
            continue

        kind = infer_kind(title)
        result.rules.append(TransactionRule(
            id=uuid.uuid4().hex,
            title=title,
            frequency=frequency,
            amount=abs(amount),
            kind=kind,
            start_date=today,
            next_due_date=first_due_date(kind, frequency, today),
        ))

    logger.info("Processed %d transactions, skipped %d lines", result.processed, result.skipped_count)
    return result


def import_csv_file(path, today: Optional[date] = None) -> ImportResult:
    """Parse a CSV file; fails when the file yields no usable rules."""
    path = Path(path)
    if path.suffix.lower() != ".csv":
        raise CSVImportError("Please upload a CSV file")

    text = path.read_text(encoding="utf-8-sig")
    if not text.strip():
        raise CSVImportError("CSV file is empty")

    result = parse_csv(text, today)
    if not result.rules:
        raise CSVImportError(
            f"No valid transactions found in {path.name} ({result.skipped_count} lines skipped)"
        )
    return result
