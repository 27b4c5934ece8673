#!/usr/bin/env python3
"""Create pending payouts for auto-payout recipients that are due.

Usage (cron / DO scheduled job, daily):
  python scripts/schedule_payouts.py
  python scripts/schedule_payouts.py --dry-run
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fooddash.modules.payouts.service import due_payments, schedule_auto_payouts  # noqa: E402
from app.fooddash.realtime import purge_changes  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--dry-run", action="store_true", help="List due auto-payouts without creating them")
    args = parser.parse_args()

    with script_session() as s:
        if args.dry_run:
            for entry in due_payments(s, only_due=True):
                if entry["auto_payout"]:
                    print(f"{entry['recipient_type']} #{entry['recipient_id']}: {entry['due_amount']:.0f}")
            s.rollback()
            return
        created = schedule_auto_payouts(s)
        purged = purge_changes(s)
    print(f"Created {len(created)} payout(s); purged {purged} old change event(s).")


if __name__ == "__main__":
    main()
