"""imobly-sync-pending-boletos: one reconciliation pass over open boletos."""

import argparse
import sys

from imobly.bradesco.factory import build_gateway
from imobly.jobs.sync_pending import DEFAULT_BATCH_SIZE, SyncPendingBoletosJob
from imobly.observability.correlation import correlation_scope


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="imobly-sync-pending-boletos",
        description="Refresh pending/registered Bradesco boletos from the bank.",
    )
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    args = parser.parse_args(argv)

    with correlation_scope():
        summary = SyncPendingBoletosJob(build_gateway()).run(batch_size=args.batch_size)

    if summary.skipped_run:
        sys.stdout.write("Another reconciliation run is in progress; nothing done.\n")
        return 0

    sys.stdout.write(
        f"processed={summary.processed} changed={summary.changed} failed={summary.failed}\n"
    )
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
