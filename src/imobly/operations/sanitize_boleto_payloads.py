"""imobly-sanitize-boleto-payloads: mask documents stored before sanitization existed."""

import argparse
import sys
from dataclasses import dataclass

from imobly.bradesco.sanitizer import sanitize
from imobly.bradesco.settings import BANK_CODE
from imobly.infra.db import txn
from imobly.infra.repositories import boletos_repository
from imobly.observability.logging import get_logger
from imobly.observability.redaction import safe_log_context

logger = get_logger(__name__)

MIN_CHUNK = 10
PAYLOAD_COLUMNS = boletos_repository.JSON_COLUMNS


@dataclass
class SanitizeReport:
    total: int = 0
    updated: int = 0
    dry_run: bool = False


def sanitize_stored_payloads(bank_code: str, chunk: int, dry_run: bool) -> SanitizeReport:
    """Re-sanitize payload columns of every boleto of bank_code.

    Rows are read and written in id order, one transaction per chunk. With
    dry_run nothing is written and updated counts the rows that would change.
    """
    chunk = max(chunk, MIN_CHUNK)
    report = SanitizeReport(dry_run=dry_run)

    with txn() as cur:
        report.total = boletos_repository.count_with_payloads(cur, bank_code=bank_code)
    if report.total == 0:
        return report

    after_id = 0
    while True:
        with txn() as cur:
            rows = boletos_repository.list_with_payloads_page(
                cur, bank_code=bank_code, limit=chunk, after_id=after_id
            )
            for row in rows:
                changed = {}
                for column in PAYLOAD_COLUMNS:
                    value = row[column]
                    if not isinstance(value, dict) or not value:
                        continue
                    sanitized = sanitize(value)
                    if sanitized != value:
                        changed[column] = sanitized
                if not changed:
                    continue
                report.updated += 1
                if not dry_run:
                    boletos_repository.update_payloads(cur, row["id"], changed)

        if len(rows) < chunk:
            break
        after_id = rows[-1]["id"]

    logger.info(
        "boleto payloads sanitized",
        extra={
            "extra_fields": safe_log_context(
                bank_code=bank_code,
                total=report.total,
                updated=report.updated,
                dry_run=dry_run,
            )
        },
    )
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="imobly-sanitize-boleto-payloads",
        description="Sanitize stored boleto request/response/webhook documents.",
    )
    parser.add_argument("--chunk", type=int, default=100, help=f"rows per batch (min {MIN_CHUNK})")
    parser.add_argument("--bank", default=BANK_CODE, help="bank code (default: bradesco)")
    parser.add_argument("--dry-run", action="store_true", help="only count rows that would change")
    args = parser.parse_args(argv)

    report = sanitize_stored_payloads(args.bank, args.chunk, args.dry_run)

    if report.total == 0:
        sys.stdout.write("No boletos with stored payloads.\n")
    elif report.updated == 0:
        sys.stdout.write("All boletos were already sanitized.\n")
    elif report.dry_run:
        sys.stdout.write(f"{report.updated} boletos would be updated (--dry-run).\n")
    else:
        sys.stdout.write(f"{report.updated} boletos sanitized.\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
