import json
import logging
from dataclasses import replace
from datetime import date
from typing import Callable, Iterable, Optional

from budgetcal import config
from budgetcal.dates import first_due_date
from budgetcal.logic import new_rule
from budgetcal.models import TransactionRule

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class RuleStore:
    """Keyed collection of rules plus the account balances the projection starts from."""

    def __init__(self, rules: Iterable[TransactionRule] = (), bank_account: float = 0.0, savings: float = 0.0):
        self._rules: dict[str, TransactionRule] = {r.id: r for r in rules}
        self.bank_account = bank_account
        self.savings = savings
        self._listeners: list[Listener] = []

    # ===== OBSERVERS =====
    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners = [l for l in self._listeners if l is not listener]

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # ===== READS =====
    @property
    def rules(self) -> tuple[TransactionRule, ...]:
        return tuple(self._rules.values())

    @property
    def current_balance(self) -> float:
        return self.bank_account + self.savings

    def get(self, rule_id: str) -> Optional[TransactionRule]:
        return self._rules.get(rule_id)

    def __len__(self):
        return len(self._rules)

    # ===== MUTATIONS =====
    def _commit(self, rules: dict[str, TransactionRule], bank_account: float, savings: float) -> None:
        """Swap in the new state and notify. A failing listener rolls the change back."""
        previous = (self._rules, self.bank_account, self.savings)
        self._rules, self.bank_account, self.savings = rules, bank_account, savings
        try:
            self._notify()
        except Exception:
            self._rules, self.bank_account, self.savings = previous
            raise

    def add(self, rule: TransactionRule) -> None:
        if rule.id in self._rules:
            raise ValueError(f"Duplicate rule id: {rule.id}")
        self._commit({**self._rules, rule.id: rule}, self.bank_account, self.savings)

    def update(self, rule: TransactionRule) -> None:
        if rule.id not in self._rules:
            raise KeyError(rule.id)
        self._commit({**self._rules, rule.id: rule}, self.bank_account, self.savings)

    def delete(self, rule_id: str) -> bool:
        if rule_id not in self._rules:
            return False
        rules = {k: r for k, r in self._rules.items() if k != rule_id}
        self._commit(rules, self.bank_account, self.savings)
        return True

    def replace_all(self, rules: Iterable[TransactionRule]) -> None:
        """Bulk load: previous rules are dropped"""
        self._commit({r.id: r for r in rules}, self.bank_account, self.savings)

    def restore(self, other: "RuleStore") -> None:
        """Take over the rules and balances of another store, e.g. one just loaded from disk"""
        self._commit(dict(other._rules), other.bank_account, other.savings)

    def update_bank_account(self, amount: float) -> None:
        self._commit(self._rules, amount, self.savings)

    def update_savings(self, amount: float) -> None:
        self._commit(self._rules, self.bank_account, amount)

    def recalculate_due_dates(self, today: Optional[date] = None) -> int:
        today = today or date.today()
        rules = {
            rule_id: replace(rule, next_due_date=first_due_date(rule.kind, rule.frequency, today))
            for rule_id, rule in self._rules.items()
        }
        if rules:
            self._commit(rules, self.bank_account, self.savings)
        return len(rules)


# ===== PERSISTENCE =====
def rule_to_dict(rule: TransactionRule) -> dict:
    return {
        "id": rule.id,
        "title": rule.title,
        "frequency": rule.frequency,
        "amount": rule.amount,
        "kind": rule.kind,
        "start_date": rule.start_date.isoformat(),
        "next_due_date": rule.next_due_date.isoformat() if rule.next_due_date else None,
        "category": rule.category,
    }


def rule_from_dict(data: dict) -> TransactionRule:
    """Rebuild a saved rule with the same checks as manual entry (ValueError on bad data)"""
    return new_rule(
        data["title"],
        data["frequency"],
        data["amount"],
        data["kind"],
        start_date=date.fromisoformat(data["start_date"]),
        next_due_date=date.fromisoformat(data["next_due_date"]) if data.get("next_due_date") else None,
        category=data.get("category"),
        rule_id=str(data["id"]),
    )


def list_save_files():
    return sorted(f.stem for f in config.SAVES_DIR.glob("*.json"))


def save_store(store: RuleStore, save_name="default") -> bool:
    data = {
        "metadata": {
            "version": "1.0",
            "created": date.today().isoformat(),
            "rule_count": len(store),
        },
        "accounts": {
            "bank_account": store.bank_account,
            "savings": store.savings,
        },
        "rules": [rule_to_dict(r) for r in store.rules],
    }

    try:
        config.SAVES_DIR.mkdir(parents=True, exist_ok=True)
        save_path = config.SAVES_DIR / f"{save_name}.json"
        save_path.write_text(json.dumps(data, indent=2))
    except OSError:
        logger.exception("Error saving data to '%s'", save_name)
        return False

    logger.info("Saved %d rules to '%s'", len(store), save_name)
    return True


def load_store(save_name="default") -> Optional[RuleStore]:
    """Build a new store from a save file. Returns None if it is missing or unreadable."""
    filepath = config.SAVES_DIR / f"{save_name}.json"
    if not filepath.exists():
        logger.warning("Save file '%s' not found", save_name)
        return None

    try:
        data = json.loads(filepath.read_text())
        accounts = data.get("accounts", {})
        bank_account = float(accounts.get("bank_account", 0))
        savings = float(accounts.get("savings", 0))
        raw_rules = list(data.get("rules", []))
    except (OSError, ValueError, TypeError, AttributeError):
        logger.exception("Error loading '%s'", save_name)
        return None

    rules = []
    for index, r_data in enumerate(raw_rules):
        try:
            rules.append(rule_from_dict(r_data))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping invalid rule #%d: %s", index, e)

    logger.info("Loaded %d rules from '%s'", len(rules), save_name)
    return RuleStore(rules, bank_account=bank_account, savings=savings)
