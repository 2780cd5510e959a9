import io
from contextlib import redirect_stdout
import tempfile
import unittest
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import patch

from budgetcal.cli import BudgetCLI
from budgetcal.csv_import import (
    CSVImportError, import_csv_file, infer_kind, normalize_frequency, parse_csv, split_line
)
from budgetcal.dates import date_key, first_due_date, parse_date_key
from budgetcal.logic import (
    BudgetProjection, aggregate, balance_on, current_projected_balance, expand,
    forward_view, new_rule, opening_balance, period_breakdown, weekly_equivalent, weekly_summary
)
from budgetcal.models import CashFlowEvent, TransactionRule
from budgetcal.storage import RuleStore, list_save_files, load_store, save_store


TODAY = date(2024, 5, 1)  # a Wednesday


def make_rule(rule_id, frequency, amount, kind, due=None, title=None, start=TODAY):
    return TransactionRule(
        id=rule_id,
        title=title or rule_id,
        frequency=frequency,
        amount=amount,
        kind=kind,
        start_date=start,
        next_due_date=due,
    )


def event(d, amount, kind, description="item", rule_id="r1"):
    return CashFlowEvent(date=d, amount=amount, kind=kind, description=description, source_rule_id=rule_id)


class TestDueDates(unittest.TestCase):
    def test_monthly_expense_on_weekday(self):
        """2024-02-01 is a Thursday and is kept"""
        self.assertEqual(first_due_date("expense", "Monthly", date(2024, 1, 15)), date(2024, 2, 1))

    def test_monthly_expense_saturday_moves_to_monday(self):
        self.assertEqual(first_due_date("expense", "Monthly", date(2024, 5, 1)), date(2024, 6, 3))

    def test_monthly_expense_sunday_moves_to_monday(self):
        # 2024-09-01 is a Sunday
        self.assertEqual(first_due_date("expense", "Monthly", date(2024, 8, 10)), date(2024, 9, 2))

    def test_monthly_income_not_shifted(self):
        self.assertEqual(first_due_date("income", "Monthly", date(2024, 5, 1)), date(2024, 6, 1))

    def test_monthly_year_rollover(self):
        self.assertEqual(first_due_date("income", "Monthly", date(2024, 12, 31)), date(2025, 1, 1))

    def test_weekly_income_next_friday(self):
        self.assertEqual(first_due_date("income", "Weekly", date(2024, 5, 1)), date(2024, 5, 3))

    def test_weekly_income_on_friday_skips_to_following_friday(self):
        self.assertEqual(first_due_date("income", "Weekly", date(2024, 5, 3)), date(2024, 5, 10))

    def test_fortnightly_income_next_friday(self):
        self.assertEqual(first_due_date("income", "Fortnightly", date(2024, 5, 1)), date(2024, 5, 3))

    def test_fortnightly_expense_two_weeks_out(self):
        self.assertEqual(first_due_date("expense", "Fortnightly", date(2024, 5, 1)), date(2024, 5, 15))

    def test_fortnightly_expense_weekend_shift(self):
        # 2024-05-18 is a Saturday, 2024-05-19 a Sunday
        self.assertEqual(first_due_date("expense", "Fortnightly", date(2024, 5, 4)), date(2024, 5, 20))
        self.assertEqual(first_due_date("expense", "Fortnightly", date(2024, 5, 5)), date(2024, 5, 20))

    def test_unmatched_combinations_return_reference(self):
        ref = date(2024, 5, 4)
        self.assertEqual(first_due_date("expense", "Weekly", ref), ref)
        self.assertEqual(first_due_date("income", "Annual", ref), ref)
        self.assertEqual(first_due_date("expense", "One-time", ref), ref)
        self.assertEqual(first_due_date("income", "Daily", ref), ref)

    def test_date_keys(self):
        self.assertEqual(date_key(date(2024, 3, 7)), "2024-03-07")
        self.assertEqual(parse_date_key("2024-03-07"), date(2024, 3, 7))


class TestExpand(unittest.TestCase):
    def test_uses_next_due_date(self):
        rule = make_rule("rent", "Monthly", 1000.0, "expense", due=date(2024, 5, 20))
        events = expand([rule], date(2024, 7, 31))
        self.assertEqual([e.date for e in events], [date(2024, 5, 20), date(2024, 6, 20), date(2024, 7, 20)])
        self.assertTrue(all(e.source_rule_id == "rent" and e.description == "rent" for e in events))

    def test_derives_first_occurrence_from_start_date(self):
        rule = make_rule("pay", "Weekly", 500.0, "income", start=date(2024, 5, 1))
        events = expand([rule], date(2024, 5, 31))
        self.assertEqual(events[0].date, date(2024, 5, 3))
        self.assertEqual(len(events), 5)

    def test_weekly_and_fortnightly_steps(self):
        weekly = make_rule("w", "Weekly", 10.0, "expense", due=date(2024, 1, 1))
        fortnightly = make_rule("f", "Fortnightly", 10.0, "expense", due=date(2024, 1, 1))
        w_events = expand([weekly], date(2024, 1, 29))
        f_events = expand([fortnightly], date(2024, 1, 29))
        self.assertEqual(len(w_events), 5)
        self.assertEqual([e.date for e in f_events], [date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 29)])

    def test_monthly_clamps_to_month_end(self):
        rule = make_rule("m", "Monthly", 10.0, "expense", due=date(2024, 1, 31))
        dates = [e.date for e in expand([rule], date(2024, 4, 30))]
        self.assertEqual(dates, [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29), date(2024, 4, 29)])

    def test_annual_step(self):
        rule = make_rule("a", "Annual", 10.0, "expense", due=date(2024, 2, 29))
        dates = [e.date for e in expand([rule], date(2026, 12, 31))]
        self.assertEqual(dates, [date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28)])

    def test_expansion_cap(self):
        rule = make_rule("w", "Weekly", 10.0, "income", due=date(2024, 1, 5))
        events = expand([rule], date(2034, 1, 1))
        self.assertEqual(len(events), 100)

    def test_one_time_emits_once(self):
        rule = make_rule("o", "One-time", 250.0, "expense", due=date(2024, 6, 1))
        self.assertEqual(len(expand([rule], date(2025, 6, 1))), 1)
        self.assertEqual(len(expand([rule], date(2034, 6, 1))), 1)

    def test_first_occurrence_past_horizon(self):
        rule = make_rule("late", "Monthly", 10.0, "expense", due=date(2025, 6, 1))
        self.assertEqual(expand([rule], date(2025, 5, 31)), [])

    def test_horizon_end_is_inclusive(self):
        rule = make_rule("w", "Weekly", 10.0, "expense", due=date(2024, 1, 1))
        self.assertEqual(expand([rule], date(2024, 1, 8))[-1].date, date(2024, 1, 8))

    def test_rule_by_rule_ordering(self):
        late = make_rule("late", "Weekly", 1.0, "expense", due=date(2024, 1, 10))
        early = make_rule("early", "Weekly", 1.0, "expense", due=date(2024, 1, 1))
        events = expand([late, early], date(2024, 1, 20))
        ids = [e.source_rule_id for e in events]
        self.assertEqual(ids, ["late", "late", "early", "early", "early"])

    def test_default_horizon_is_one_year(self):
        rule = make_rule("m", "Monthly", 10.0, "expense", due=TODAY)
        events = expand([rule], today=TODAY)
        self.assertEqual(events[-1].date, date(2025, 5, 1))
        self.assertEqual(len(events), 13)


class TestAggregate(unittest.TestCase):
    def setUp(self):
        self.rules = [
            make_rule("salary", "Monthly", 2000.0, "income", due=date(2024, 5, 1)),
            make_rule("rent", "Monthly", 1200.0, "expense", due=date(2024, 5, 3)),
            make_rule("food", "Weekly", 150.0, "expense", due=date(2024, 5, 1)),
            make_rule("bonus", "One-time", 300.0, "income", due=date(2024, 7, 15)),
        ]
        self.horizon = date(2025, 5, 1)

    def project(self):
        events = expand(self.rules, self.horizon)
        return aggregate(events, 100.0, TODAY, self.horizon, today=TODAY)

    def test_deterministic(self):
        self.assertEqual(self.project(), self.project())

    def test_balance_continuity(self):
        balances = list(self.project().values())
        self.assertAlmostEqual(balances[0].balance, 100.0 + 2000.0 - 150.0)
        for prev, cur in zip(balances, balances[1:]):
            self.assertEqual(cur.date, prev.date + timedelta(days=1))
            self.assertAlmostEqual(cur.balance, prev.balance + cur.daily_income - cur.daily_expenses)

    def test_amounts_non_negative(self):
        for day in self.project().values():
            self.assertGreaterEqual(day.daily_income, 0)
            self.assertGreaterEqual(day.daily_expenses, 0)

    def test_covers_full_range(self):
        balances = self.project()
        self.assertEqual(len(balances), (self.horizon - TODAY).days + 1)
        self.assertEqual(next(iter(balances)), "2024-05-01")
        self.assertIn("2025-05-01", balances)

    def test_lookup_by_key(self):
        day = self.project().get("2024-05-03")
        self.assertEqual(day.daily_expenses, 1200.0)
        self.assertEqual(day.daily_income, 0.0)
        self.assertAlmostEqual(day.balance, 100.0 + 2000.0 - 150.0 - 1200.0)
        self.assertEqual([e.source_rule_id for e in day.events], ["rent"])

    def test_same_day_events_keep_input_order(self):
        d = date(2024, 5, 2)
        events = [event(d, 5.0, "expense", "b", "b"), event(date(2024, 5, 1), 1.0, "income"), event(d, 7.0, "income", "a", "a")]
        balances = aggregate(events, 0.0, horizon_end=d, today=TODAY)
        self.assertEqual([e.source_rule_id for e in balances["2024-05-02"].events], ["b", "a"])
        self.assertAlmostEqual(balances["2024-05-02"].balance, 3.0)

    def test_defaults_to_earliest_event(self):
        events = [event(date(2024, 5, 10), 10.0, "income"), event(date(2024, 5, 5), 4.0, "expense")]
        balances = aggregate(events, horizon_end=date(2024, 5, 12), today=TODAY)
        self.assertEqual(next(iter(balances)), "2024-05-05")
        self.assertAlmostEqual(balances["2024-05-12"].balance, 6.0)

    def test_no_events_starts_today(self):
        balances = aggregate([], 50.0, today=TODAY)
        self.assertEqual(next(iter(balances)), "2024-05-01")
        self.assertEqual(len(balances), 366)
        self.assertTrue(all(d.balance == 50.0 for d in balances.values()))

    def test_negative_balance_allowed(self):
        balances = aggregate([event(TODAY, 80.0, "expense")], 20.0, TODAY, TODAY, today=TODAY)
        self.assertAlmostEqual(balances["2024-05-01"].balance, -60.0)


class TestForwardView(unittest.TestCase):
    def setUp(self):
        self.rules = [
            make_rule("salary", "Weekly", 500.0, "income", due=TODAY),
            make_rule("rent", "Monthly", 900.0, "expense", due=date(2024, 5, 3)),
            make_rule("phone", "Monthly", 30.0, "expense", due=TODAY),
        ]
        self.events = expand(self.rules, today=TODAY)
        self.balances = aggregate(self.events, 1000.0, TODAY, today=TODAY)

    def test_today_matches_aggregate(self):
        today_balance = balance_on(TODAY, self.events, self.balances, 1000.0, today=TODAY)
        self.assertAlmostEqual(today_balance, self.balances[date_key(TODAY)].balance)
        self.assertAlmostEqual(today_balance, 1470.0)

    def test_running_balance_groups(self):
        days = forward_view(TODAY, self.events, self.balances, 1000.0, today=TODAY)
        self.assertEqual(days[0].date, TODAY)
        self.assertEqual(len(days[0].events), 2)
        self.assertAlmostEqual(days[0].starting_balance, 1000.0)
        self.assertAlmostEqual(days[1].starting_balance, days[0].ending_balance)
        for day in days:
            self.assertAlmostEqual(day.ending_balance, day.starting_balance + day.daily_net)
        # agrees with the aggregator on every day with activity
        for day in days:
            key = date_key(day.date)
            if key in self.balances:
                self.assertAlmostEqual(day.ending_balance, self.balances[key].balance)

    def test_filters_earlier_events(self):
        selected = date(2024, 5, 4)
        days = forward_view(selected, self.events, self.balances, 1000.0, today=TODAY)
        self.assertTrue(all(d.date >= selected for d in days))

    def test_opening_balance_past_date(self):
        past = date(2024, 5, 3)
        later = date(2024, 5, 10)
        self.assertAlmostEqual(
            opening_balance(past, self.balances, 1000.0, today=later),
            self.balances["2024-05-03"].balance,
        )
        self.assertEqual(opening_balance(date(2020, 1, 1), self.balances, 1000.0, today=later), 1000.0)

    def test_opening_balance_future_uses_current(self):
        self.assertEqual(opening_balance(date(2024, 8, 1), self.balances, 1234.0, today=TODAY), 1234.0)

    def test_balance_on_day_without_events(self):
        # 2024-05-02 has no events; the forward view starts from the current balance
        self.assertEqual(balance_on(date(2024, 5, 2), self.events, self.balances, 1000.0, today=TODAY), 1000.0)


class TestSummaries(unittest.TestCase):
    def test_weekly_equivalents(self):
        self.assertEqual(weekly_equivalent(make_rule("a", "Weekly", 100.0, "income")), 100.0)
        self.assertEqual(weekly_equivalent(make_rule("b", "Fortnightly", 100.0, "income")), 50.0)
        self.assertAlmostEqual(weekly_equivalent(make_rule("c", "Monthly", 520.0, "income")), 120.0)
        self.assertAlmostEqual(weekly_equivalent(make_rule("d", "Annual", 520.0, "income")), 10.0)
        self.assertAlmostEqual(weekly_equivalent(make_rule("e", "One-time", 52.0, "income")), 1.0)

    def test_weekly_summary(self):
        summary = weekly_summary([
            make_rule("pay", "Weekly", 100.0, "income"),
            make_rule("rent", "Monthly", 520.0, "expense"),
        ])
        self.assertAlmostEqual(summary.weekly_income, 100.0)
        self.assertAlmostEqual(summary.weekly_expenses, 120.0)
        self.assertAlmostEqual(summary.weekly_net, -20.0)
        self.assertAlmostEqual(summary.monthly_savings, -86.6)

    def test_current_projected_balance(self):
        balances = aggregate([event(TODAY, 10.0, "income")], 5.0, TODAY, TODAY, today=TODAY)
        self.assertEqual(current_projected_balance(balances, TODAY), 15.0)
        self.assertEqual(current_projected_balance(balances, date(2030, 1, 1)), 0.0)

    def test_weekly_breakdown(self):
        today = date(2024, 5, 15)  # Wednesday, week starts Sunday 2024-05-12
        events = [
            event(date(2024, 5, 17), 30.0, "expense", "Gym membership"),
            event(date(2024, 5, 12), 200.0, "income", "Salary"),
            event(date(2024, 5, 11), 99.0, "expense", "Outside week"),
        ]
        report = period_breakdown(events, "weekly", today)
        self.assertEqual(report["start"], date(2024, 5, 12))
        self.assertEqual(len(report["bars"]), 7)
        self.assertEqual(report["bars"][0]["name"], "Sun")
        self.assertEqual(report["bars"][0]["income"], 200.0)
        self.assertEqual(report["bars"][5]["expense"], 30.0)
        self.assertEqual(report["expenses_by_category"], {"Gym": 30.0})

    def test_monthly_breakdown(self):
        events = [
            event(date(2024, 5, 1), 10.0, "expense", "Rent"),
            event(date(2024, 5, 31), 5.0, "expense", ""),
            event(date(2024, 6, 1), 7.0, "expense", "Rent"),
        ]
        report = period_breakdown(events, "monthly", date(2024, 5, 20))
        self.assertEqual(len(report["bars"]), 5)
        self.assertEqual(report["bars"][0]["name"], "Week 1")
        self.assertEqual(report["bars"][0]["expense"], 10.0)
        self.assertEqual(report["bars"][4]["expense"], 5.0)
        self.assertEqual(report["expenses_by_category"], {"Rent": 10.0, "Other": 5.0})

        february = period_breakdown([], "monthly", date(2023, 2, 10))
        self.assertEqual(len(february["bars"]), 4)

    def test_breakdown_rejects_unknown_view(self):
        with self.assertRaises(ValueError):
            period_breakdown([], "daily", TODAY)


class TestNewRule(unittest.TestCase):
    def test_valid_rule(self):
        rule = new_rule("Gym", "Monthly", "25.50", "expense", start_date=TODAY)
        self.assertEqual(rule.amount, 25.5)
        self.assertEqual(rule.start_date, TODAY)
        self.assertIsNone(rule.next_due_date)
        self.assertTrue(rule.id)

    def test_rejects_bad_amounts(self):
        for amount in ("abc", "", None, 0, "-5", float("nan"), "inf", "-inf", "1e309", float("inf")):
            with self.assertRaises(ValueError):
                new_rule("Gym", "Monthly", amount, "expense")

    def test_rejects_bad_fields(self):
        with self.assertRaises(ValueError):
            new_rule("Gym", "Daily", 10, "expense")
        with self.assertRaises(ValueError):
            new_rule("Gym", "Monthly", 10, "transfer")
        with self.assertRaises(ValueError):
            new_rule("  ", "Monthly", 10, "expense")


class TestCSVImport(unittest.TestCase):
    def test_skip_accounting(self):
        text = "\n".join([
            "Title,Frequency,Amount",
            'Salary,Monthly,"£2,500.00"',
            "Rent,Monthly,1200",
            "Netflix,Monthly,0",
            "Child Benefit,Weekly,$50",
        ])
        result = parse_csv(text, TODAY)
        self.assertEqual(result.processed, 3)
        self.assertEqual(result.skipped_count, 2)
        self.assertEqual([s.line for s in result.skipped], [1, 4])

        salary, rent, benefit = result.rules
        self.assertEqual((salary.kind, salary.amount), ("income", 2500.0))
        self.assertEqual((rent.kind, rent.amount), ("expense", 1200.0))
        self.assertEqual((benefit.kind, benefit.frequency), ("income", "Weekly"))
        self.assertEqual(rent.start_date, TODAY)
        self.assertEqual(rent.next_due_date, date(2024, 6, 3))
        self.assertEqual(salary.next_due_date, date(2024, 6, 1))

    def test_skip_reasons(self):
        text = "\n".join([
            "Household Budget,,",
            "Just a note",
            "Introduction,Monthly,5",
            "Car,Monthly,lots",
            "Bus,Daily,3",
            "",
            "Tax,Annual,-300",
        ])
        result = parse_csv(text, TODAY)
        reasons = [s.reason for s in result.skipped]
        self.assertEqual(len(reasons), 5)
        self.assertTrue(reasons[0].startswith("Header"))
        self.assertTrue(reasons[1].startswith("Insufficient"))
        self.assertTrue(reasons[2].startswith("Header"))
        self.assertTrue(reasons[3].startswith("Invalid amount"))
        self.assertTrue(reasons[4].startswith("Invalid frequency"))
        self.assertEqual(result.rules[0].amount, 300.0)

    def test_infinite_amounts_skipped(self):
        text = "\n".join([
            "Lottery,One-time,inf",
            "Mortgage,Monthly,-1e309",
            "Rent,Monthly,900",
        ])
        result = parse_csv(text, TODAY)
        self.assertEqual([r.title for r in result.rules], ["Rent"])
        self.assertEqual([s.line for s in result.skipped], [1, 2])
        self.assertTrue(all(s.reason.startswith("Invalid amount") for s in result.skipped))

    def test_quoted_fields(self):
        self.assertEqual(split_line('"Gas, electric", Monthly, 80'), ["Gas, electric", "Monthly", "80"])
        self.assertEqual(split_line('"The ""big"" shop",Weekly,40'), ['The "big" shop', "Weekly", "40"])

    def test_frequency_normalization(self):
        self.assertEqual(normalize_frequency("Every week"), "Weekly")
        self.assertEqual(normalize_frequency("FORTNIGHTLY"), "Fortnightly")
        self.assertEqual(normalize_frequency("bi-weekly"), "Weekly")
        self.assertEqual(normalize_frequency("Monthly"), "Monthly")
        self.assertEqual(normalize_frequency("Yearly"), "Annual")
        self.assertEqual(normalize_frequency("annually"), "Annual")
        self.assertEqual(normalize_frequency("Once off"), "One-time")
        self.assertIsNone(normalize_frequency("daily"))

    def test_kind_inference(self):
        self.assertEqual(infer_kind("Net salary"), "income")
        self.assertEqual(infer_kind("State pension"), "income")
        self.assertEqual(infer_kind("Pension contribution"), "expense")
        self.assertEqual(infer_kind("Children's allowance"), "expense")
        self.assertEqual(infer_kind("Carer's allowance"), "income")
        self.assertEqual(infer_kind("Childrens pocket money"), "expense")
        self.assertEqual(infer_kind("Home insurance payment"), "expense")
        self.assertEqual(infer_kind("Groceries"), "expense")

    def test_import_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            good = Path(tmp) / "budget.csv"
            good.write_text("Title,Frequency,Amount\nWages,Weekly,400\n", encoding="utf-8")
            result = import_csv_file(good, TODAY)
            self.assertEqual(result.processed, 1)
            self.assertEqual(result.rules[0].next_due_date, date(2024, 5, 3))

            bad = Path(tmp) / "empty.csv"
            bad.write_text("Title,Frequency,Amount\nRent,Monthly,0\n", encoding="utf-8")
            with self.assertRaises(CSVImportError):
                import_csv_file(bad, TODAY)

            blank = Path(tmp) / "blank.csv"
            blank.write_text("\n\n", encoding="utf-8")
            with self.assertRaises(CSVImportError):
                import_csv_file(blank, TODAY)

            text_file = Path(tmp) / "budget.txt"
            text_file.write_text("Wages,Weekly,400\n", encoding="utf-8")
            with self.assertRaises(CSVImportError):
                import_csv_file(text_file, TODAY)


class TestRuleStore(unittest.TestCase):
    def setUp(self):
        self.store = RuleStore()
        self.calls = []
        self.store.subscribe(lambda: self.calls.append(len(self.store)))

    def test_mutations_notify(self):
        rule = make_rule("a", "Weekly", 10.0, "expense")
        self.store.add(rule)
        self.store.update(make_rule("a", "Weekly", 20.0, "expense"))
        self.store.update_bank_account(100.0)
        self.store.update_savings(50.0)
        self.assertTrue(self.store.delete("a"))
        self.assertFalse(self.store.delete("a"))
        self.assertEqual(self.calls, [1, 1, 1, 1, 0])
        self.assertEqual(self.store.current_balance, 150.0)

    def test_listener_failure_rolls_back(self):
        self.store.add(make_rule("a", "Weekly", 10.0, "expense"))
        self.store.update_bank_account(100.0)

        def fail():
            raise ValueError("year 10000 is out of range")
        self.store.subscribe(fail)

        with self.assertRaises(ValueError):
            self.store.add(make_rule("b", "Monthly", 5.0, "expense"))
        with self.assertRaises(ValueError):
            self.store.update_bank_account(999.0)
        with self.assertRaises(ValueError):
            self.store.replace_all([])
        self.assertFalse(self.store.delete("missing"))

        self.assertEqual([r.id for r in self.store.rules], ["a"])
        self.assertEqual(self.store.bank_account, 100.0)

        self.store.unsubscribe(fail)
        self.assertTrue(self.store.delete("a"))
        self.assertEqual(len(self.store), 0)

    def test_update_unknown_rule(self):
        with self.assertRaises(KeyError):
            self.store.update(make_rule("missing", "Weekly", 10.0, "expense"))

    def test_duplicate_add(self):
        self.store.add(make_rule("a", "Weekly", 10.0, "expense"))
        with self.assertRaises(ValueError):
            self.store.add(make_rule("a", "Weekly", 10.0, "expense"))

    def test_replace_all_clears_previous(self):
        self.store.add(make_rule("old", "Weekly", 10.0, "expense"))
        self.store.replace_all([make_rule("new1", "Weekly", 1.0, "income"), make_rule("new2", "Annual", 2.0, "expense")])
        self.assertEqual([r.id for r in self.store.rules], ["new1", "new2"])
        self.assertIsNone(self.store.get("old"))

    def test_recalculate_due_dates(self):
        self.store.replace_all([
            make_rule("rent", "Monthly", 900.0, "expense", due=date(2023, 1, 1)),
            make_rule("gift", "One-time", 50.0, "expense"),
        ])
        count = self.store.recalculate_due_dates(TODAY)
        self.assertEqual(count, 2)
        self.assertEqual(self.store.get("rent").next_due_date, date(2024, 6, 3))
        self.assertEqual(self.store.get("gift").next_due_date, TODAY)
        self.assertEqual(self.store.get("rent").amount, 900.0)

    def test_projection_recomputes_on_change(self):
        projection = BudgetProjection(self.store, today=lambda: TODAY)
        self.assertEqual(projection.day(TODAY).balance, 0.0)
        self.assertIsNone(projection.day(TODAY - timedelta(days=1)))

        self.store.update_bank_account(200.0)
        self.store.add(make_rule("pay", "Weekly", 100.0, "income", due=TODAY))
        self.assertEqual(projection.day(TODAY).balance, 300.0)
        self.assertEqual(projection.day(TODAY + timedelta(days=7)).balance, 400.0)
        self.assertEqual(len(projection.events), 53)

        self.store.delete("pay")
        self.assertEqual(projection.events, [])
        self.assertEqual(projection.day(TODAY).balance, 200.0)


class TestPersistence(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.saves_dir = Path(self._tmp.name) / "saves"
        patcher = patch("budgetcal.config.SAVES_DIR", self.saves_dir)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self._tmp.cleanup)

    def test_save_and_load(self):
        store = RuleStore(bank_account=1500.0, savings=250.0)
        store.add(make_rule("rent", "Monthly", 900.0, "expense", due=date(2024, 6, 3)))
        store.add(new_rule("Bonus", "One-time", 300, "income", start_date=TODAY, category="Work"))

        self.assertTrue(save_store(store, "test_save"))
        self.assertEqual(list_save_files(), ["test_save"])

        loaded = load_store("test_save")
        self.assertEqual(loaded.rules, store.rules)
        self.assertEqual(loaded.bank_account, 1500.0)
        self.assertEqual(loaded.savings, 250.0)

    def test_load_missing_or_corrupt(self):
        self.assertIsNone(load_store("nope"))
        self.saves_dir.mkdir(parents=True)
        (self.saves_dir / "broken.json").write_text("{not json")
        self.assertIsNone(load_store("broken"))

    def test_invalid_rules_skipped(self):
        self.saves_dir.mkdir(parents=True)
        (self.saves_dir / "partial.json").write_text(
            '{"rules": [{"id": "x"}, {"id": "ok", "title": "Rent", "frequency": "Monthly",'
            ' "amount": 10, "kind": "expense", "start_date": "2024-05-01"},'
            ' {"id": "neg", "title": "Pay", "frequency": "Weekly", "amount": -50, "kind": "income",'
            ' "start_date": "2024-05-01", "next_due_date": "2024-05-02"},'
            ' {"id": "big", "title": "Pay", "frequency": "Weekly", "amount": "inf", "kind": "income",'
            ' "start_date": "2024-05-01"},'
            ' {"id": "kind", "title": "Shoes", "frequency": "Monthly", "amount": 20, "kind": "refund",'
            ' "start_date": "2024-05-01"},'
            ' {"id": "freq", "title": "Bus", "frequency": "Daily", "amount": 3, "kind": "expense",'
            ' "start_date": "2024-05-01"},'
            ' {"id": "numeric", "title": 7, "frequency": "Monthly", "amount": 3, "kind": "expense",'
            ' "start_date": "2024-05-01"}]}'
        )
        loaded = load_store("partial")
        self.assertEqual([r.id for r in loaded.rules], ["ok"])
        self.assertIsNone(loaded.rules[0].next_due_date)

        balances = aggregate(expand(loaded.rules, today=TODAY), today=TODAY)
        self.assertTrue(all(d.daily_income >= 0 and d.daily_expenses >= 0 for d in balances.values()))


class TestCLI(unittest.TestCase):
    def run_cmd(self, shell, line):
        out = io.StringIO()
        with redirect_stdout(out):
            shell.onecmd(line)
        return out.getvalue()

    def test_add_and_project(self):
        shell = BudgetCLI()
        today = date.today()
        self.run_cmd(shell, "account bank 100")
        output = self.run_cmd(shell, f"add 50 income weekly --due {today.isoformat()} --title Pocket wage")
        self.assertIn("Added income 'Pocket wage'", output)
        self.assertEqual(shell.projection.day(today).balance, 150.0)
        self.assertIn("$150.00", self.run_cmd(shell, "day"))

    def test_rejects_invalid_amount(self):
        shell = BudgetCLI()
        output = self.run_cmd(shell, "add zero expense monthly --title Rent")
        self.assertIn("Invalid input", output)
        self.assertEqual(len(shell.store), 0)

    def test_rule_past_calendar_end_not_kept(self):
        shell = BudgetCLI()
        output = self.run_cmd(shell, "add 10 expense monthly 9999-12-15 --title Far future")
        self.assertIn("Invalid input", output)
        self.assertEqual(len(shell.store), 0)
        self.assertEqual(shell.projection.events, [])

    def test_import_replaces_rules(self):
        shell = BudgetCLI(RuleStore([make_rule("old", "Weekly", 5.0, "expense")]))
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "budget.csv"
            path.write_text("Title,Frequency,Amount\nSalary,Monthly,2000\nRent,Monthly,900\n", encoding="utf-8")
            output = self.run_cmd(shell, f"import {path}")
        self.assertIn("Loaded 2 transactions", output)
        self.assertIn("Line 1: Header/title row detected", output)
        self.assertEqual(sorted(r.title for r in shell.store.rules), ["Rent", "Salary"])
        self.assertEqual({e.source_rule_id for e in shell.projection.events}, {r.id for r in shell.store.rules})


if __name__ == "__main__":
    unittest.main()
