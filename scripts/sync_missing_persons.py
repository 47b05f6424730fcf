#!/usr/bin/env python3
"""
Entry point used by cron to sync NCMEC missing children alerts for the Bay Area.

Usage:
    python3 scripts/sync_missing_persons.py --verbose
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.services.missing_persons import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
