#!/usr/bin/env python3
"""Send the advisory stale-pending alert and lease expiration reminders."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from occupancy.config import SessionLocal, settings  # noqa: E402
from occupancy.core.logging import configure_logging  # noqa: E402
from occupancy.services.reminders import notify_lease_expirations, notify_stale_pending  # noqa: E402


def main() -> None:
    configure_logging(settings.log_level.upper(), settings.log_format)
    with SessionLocal() as session:
        stale = notify_stale_pending(session)
        reminders = notify_lease_expirations(session)
    if stale:
        print(f"Stale pending alert sent for {stale} requests.")
    else:
        print("No stale pending requests.")
    print(f"Lease expiration reminders sent: {len(reminders)}")


if __name__ == "__main__":
    main()
