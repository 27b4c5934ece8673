#!/usr/bin/env python3
"""Resume restaurants whose temporary pause has expired (idempotent).

Usage (cron / DO scheduled job, every minute):
  python scripts/auto_resume_restaurants.py
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fooddash.modules.restaurants.service import auto_resume_restaurants  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    with script_session() as s:
        resumed = auto_resume_restaurants(s)
    if resumed:
        print(f"Resumed {len(resumed)} restaurant(s): {', '.join(str(i) for i in resumed)}")
    else:
        print("No expired pauses.")


if __name__ == "__main__":
    main()
