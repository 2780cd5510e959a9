import logging
import sys

from budgetcal import config
from budgetcal.cli import BudgetCLI
from budgetcal.storage import load_store


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    store = load_store(argv[0]) if argv else None
    BudgetCLI(store).cmdloop()


if __name__ == "__main__":
    main()
