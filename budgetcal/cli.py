import cmd
from dataclasses import replace
from datetime import date
from typing import Optional

from budgetcal.csv_import import CSVImportError, import_csv_file, normalize_frequency
from budgetcal.dates import date_key
from budgetcal.logic import (
    BudgetProjection,
    current_projected_balance,
    forward_view,
    new_rule,
    opening_balance,
    period_breakdown,
    weekly_summary,
)
from budgetcal.storage import RuleStore, list_save_files, load_store, save_store


class BudgetCLI(cmd.Cmd):
    prompt = "(budget) "

    def __init__(self, store: Optional[RuleStore] = None):
        super().__init__()
        self.intro = "Welcome to Budget Calendar. Type 'help' for commands."
        self.store = store if store is not None else RuleStore()
        self.projection = BudgetProjection(self.store)

    # ===== RULES =====
    def do_add(self, arg):
        """Add a rule: add <amount> <income|expense> <frequency> [YYYY-MM-DD] [--due YYYY-MM-DD] [--cat NAME] --title "title" """
        try:
            args = self._parse_add_args(arg)
            rule = new_rule(**args)
            self.store.add(rule)
            print(f"✓ Added {rule.kind} '{rule.title}' of ${rule.amount:.2f} ({rule.frequency}) [{rule.id[:8]}]")
        except (ValueError, OverflowError) as e:
            print(f"Invalid input: {e}")

    def do_list(self, arg):
        """List all rules"""
        if not len(self.store):
            print("No transactions defined")
            return
        print(f"\n{'ID':<9}{'Title':<28}{'Type':<9}{'Frequency':<12}{'Amount':>11}  Next due")
        for rule in self.store.rules:
            due = rule.next_due_date.isoformat() if rule.next_due_date else "-"
            print(f"{rule.id[:8]:<9}{rule.title[:27]:<28}{rule.kind:<9}{rule.frequency:<12}"
                  f"{rule.amount:>11,.2f}  {due}")

    def do_edit(self, arg):
        """Edit a rule: edit <ID> <title|amount|kind|frequency|due|category> <value>"""
        args = arg.split(maxsplit=2)
        if len(args) < 3:
            print("Usage: edit <ID> <title|amount|kind|frequency|due|category> <value>")
            return

        try:
            rule = self._find_rule(args[0])
            field, value = args[1].lower(), args[2].strip()
            if field == "title":
                edited = new_rule(value, rule.frequency, rule.amount, rule.kind, rule.start_date,
                                  rule.next_due_date, rule.category, rule.id)
            elif field == "amount":
                edited = new_rule(rule.title, rule.frequency, value, rule.kind, rule.start_date,
                                  rule.next_due_date, rule.category, rule.id)
            elif field == "kind":
                edited = new_rule(rule.title, rule.frequency, rule.amount, value.lower(), rule.start_date,
                                  rule.next_due_date, rule.category, rule.id)
            elif field == "frequency":
                frequency = normalize_frequency(value)
                if frequency is None:
                    raise ValueError(f"Unknown frequency: {value}")
                edited = replace(rule, frequency=frequency)
            elif field == "due":
                edited = replace(rule, next_due_date=date.fromisoformat(value))
            elif field == "category":
                edited = replace(rule, category=value or None)
            else:
                raise ValueError(f"Unknown field: {field}")
            self.store.update(edited)
            print(f"✓ Updated '{edited.title}'")
        except (ValueError, KeyError) as e:
            print(f"Invalid input: {e}")

    def do_delete(self, arg):
        """Delete a rule: delete <ID>"""
        if not arg.strip():
            print("Usage: delete <ID>")
            return
        try:
            rule = self._find_rule(arg.strip())
        except KeyError as e:
            print(f"Error: {e}")
            return
        if self.store.delete(rule.id):
            print(f"✓ Deleted '{rule.title}'")

    def do_import(self, arg):
        """Replace all rules with the contents of a CSV file: import <path>"""
        if not arg.strip():
            print("Usage: import <path.csv>")
            return
        try:
            result = import_csv_file(arg.strip())
        except (CSVImportError, OSError) as e:
            print(f"Error: {e}")
            return

        self.store.replace_all(result.rules)
        print(f"✓ Loaded {result.processed} transactions (previous data cleared)")
        if result.skipped:
            print(f"Skipped {result.skipped_count} lines:")
            for skipped in result.skipped:
                print(f"  Line {skipped.line}: {skipped.reason}")

    def do_recalc(self, arg):
        """Recalculate the next due date of every rule from today"""
        if not len(self.store):
            print("No transactions to recalculate")
            return
        count = self.store.recalculate_due_dates()
        print(f"✓ Recalculated payment dates for {count} transactions")

    def do_account(self, arg):
        """Show or set balances: account [bank|savings <amount>]"""
        args = arg.split()
        if len(args) == 2:
            try:
                amount = float(args[1])
            except ValueError:
                print(f"Invalid input: {args[1]} is not a number")
                return
            if args[0] == "bank":
                self.store.update_bank_account(amount)
            elif args[0] == "savings":
                self.store.update_savings(amount)
            else:
                print("Usage: account [bank|savings <amount>]")
                return
        elif args:
            print("Usage: account [bank|savings <amount>]")
            return

        print(f"  Bank account: ${self.store.bank_account:,.2f}")
        print(f"  Savings:      ${self.store.savings:,.2f}")
        print(f"  Total:        ${self.store.current_balance:,.2f}")

    # ===== PROJECTIONS =====
    def do_day(self, arg):
        """Show the projected balance of a day: day [YYYY-MM-DD]"""
        try:
            target = self._parse_date_arg(arg)
        except ValueError as e:
            print(f"Invalid input: {e}")
            return

        day = self.projection.day(target)
        if day is None:
            print(f"No projection for {date_key(target)}")
            return

        print(f"\nProjected Balance on {date_key(target)}:")
        print(f"  ${day.balance:,.2f}")
        print(f"  Income: ${day.daily_income:,.2f}   Expenses: ${day.daily_expenses:,.2f}")
        for event in day.events:
            sign = "+" if event.kind == "income" else "-"
            print(f"    {sign}${event.amount:,.2f}  {event.description}")

    def do_forward(self, arg):
        """Show upcoming transactions from a date: forward [YYYY-MM-DD] [--limit N]"""
        args = arg.split()
        limit = 10
        try:
            if "--limit" in args:
                i = args.index("--limit")
                limit = int(args[i + 1])
                args = args[:i] + args[i + 2:]
            selected = self._parse_date_arg(" ".join(args))
        except (ValueError, IndexError):
            print("Usage: forward [YYYY-MM-DD] [--limit N]")
            return

        current = self.store.current_balance
        opening = opening_balance(selected, self.projection.balances, current)
        days = forward_view(selected, self.projection.events, self.projection.balances, current)

        print(f"\nForward view from {selected:%b %d, %Y}")
        print(f"  Opening balance: ${opening:,.2f}")
        if not days:
            print("  No upcoming transactions")
            return
        for day in days[:limit]:
            print(f"\n  {day.date:%a %b %d, %Y}  net {day.daily_net:+,.2f}  balance ${day.ending_balance:,.2f}")
            for event in day.events:
                sign = "+" if event.kind == "income" else "-"
                print(f"    {sign}${event.amount:,.2f}  {event.description}")

    def do_summary(self, arg):
        """Show weekly averages and estimated monthly savings"""
        summary = weekly_summary(self.store.rules)
        print(f"\n{' Summary ':-^50}")
        print(f"  Current balance:  ${current_projected_balance(self.projection.balances):,.2f}")
        print(f"  Weekly income:    ${summary.weekly_income:,.2f}")
        print(f"  Weekly expenses:  ${summary.weekly_expenses:,.2f}")
        print(f"  Weekly net:       ${summary.weekly_net:,.2f}")
        print(f"  Monthly savings:  ${summary.monthly_savings:,.2f}")

    def do_chart(self, arg):
        """Income and expenses for the current period: chart [--week|--month]"""
        view = "monthly" if arg.strip() == "--month" else "weekly"
        report = period_breakdown(self.projection.events, view)

        print(f"\n{' ' + view.capitalize() + ' Overview ':-^50}")
        print(f"Period: {report['start']} → {report['end']}")
        for bar in report["bars"]:
            print(f"  {bar['name']:<8} Income: ${bar['income']:>10,.2f}   Expense: ${bar['expense']:>10,.2f}")

        if report["expenses_by_category"]:
            print("\nExpenses by category:")
            for name, value in sorted(report["expenses_by_category"].items(), key=lambda kv: -kv[1]):
                print(f"  {name}: ${value:,.2f}")

    # ===== DATA MANAGEMENT =====
    def do_save(self, arg):
        """Save current data: save [name=default]"""
        name = arg.strip() or "default"
        if save_store(self.store, name):
            print(f"✓ Saved as '{name}'")
        else:
            print(f"Error saving '{name}'")

    def do_load(self, arg):
        """Load saved data: load [name]"""
        saves = list_save_files()
        if not saves:
            print("No save files available")
            return

        if not arg:
            print("Available saves:")
            for i, name in enumerate(saves, 1):
                print(f"{i}. {name}")
            try:
                choice = int(input("Select save: ")) - 1
                name = saves[choice]
            except (ValueError, IndexError):
                print("Invalid selection")
                return
        else:
            name = arg.strip()

        loaded = load_store(name)
        if loaded is None:
            print(f"Could not load '{name}'")
            return
        try:
            self.store.restore(loaded)
        except ValueError as e:
            print(f"Could not load '{name}': {e}")
            return
        print(f"✓ Loaded {len(loaded)} transactions")

    # ===== UTILITIES =====
    def do_exit(self, arg):
        """Exit the program"""
        print("Goodbye!")
        return True

    # ===== HELPERS =====
    def _find_rule(self, prefix: str):
        matches = [r for r in self.store.rules if r.id.startswith(prefix)]
        if len(matches) != 1:
            raise KeyError(f"No unique transaction matches '{prefix}'")
        return matches[0]

    @staticmethod
    def _parse_date_arg(arg) -> date:
        arg = arg.strip()
        if not arg:
            return date.today()
        try:
            return date.fromisoformat(arg)
        except ValueError:
            raise ValueError("Date must be in YYYY-MM-DD format") from None

    @staticmethod
    def _parse_add_args(arg):
        """Parse add command arguments"""
        args = arg.split()
        if len(args) < 3:
            raise ValueError("Missing required arguments (amount, type and frequency)")

        frequency = normalize_frequency(args[2])
        if frequency is None:
            raise ValueError("Invalid frequency, use: weekly/fortnightly/monthly/annual/one-time")

        result = {
            'amount': args[0],
            'kind': args[1].lower(),
            'frequency': frequency,
            'start_date': date.today(),
            'next_due_date': None,
            'category': None,
            'title': "",
        }

        i = 3
        while i < len(args):
            if args[i] == '--title':
                result['title'] = ' '.join(args[i+1:]).strip('"')
                break
            elif args[i] == '--due':
                if i+1 >= len(args):
                    raise ValueError("Missing date after --due")
                result['next_due_date'] = date.fromisoformat(args[i+1])
                i += 2
            elif args[i] == '--cat':
                if i+1 >= len(args):
                    raise ValueError("Missing name after --cat")
                result['category'] = args[i+1]
                i += 2
            elif args[i].startswith('--'):
                raise ValueError(f"Unknown flag: {args[i]}")
            else:
                result['start_date'] = date.fromisoformat(args[i])
                i += 1

        return result
