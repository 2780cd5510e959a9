"""Runtime configuration, overridable through environment variables."""

import os
from pathlib import Path


SAVES_DIR = Path(os.getenv("BUDGETCAL_SAVES_DIR", "saves"))
LOG_LEVEL = os.getenv("BUDGETCAL_LOG_LEVEL", "WARNING")

# Projection window and per-rule expansion guard
HORIZON_DAYS = int(os.getenv("BUDGETCAL_HORIZON_DAYS", "365"))
MAX_OCCURRENCES = 100

WEEKS_PER_MONTH = 4.33
