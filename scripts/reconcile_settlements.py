import argparse
import logging
import os

from ticketmarket.application.reconciliation_service import ReconciliationService
from ticketmarket.infrastructure.db.session import get_db_session

logger = logging.getLogger("reconcile_settlements")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Finish settlements that stopped after the payment was recorded."
    )
    parser.add_argument("--limit", type=int, default=None, help="Scan at most this many payments.")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    with get_db_session() as db:
        report = ReconciliationService(db).run(limit=args.limit)

    print(
        f"Reconciliation complete: scanned={report.scanned} "
        f"repaired={len(report.repaired)} failed={len(report.failed)}"
    )
    for failure in report.failed:
        print(f"  {failure.transaction_id}: {failure.reason}")
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
