"""Reconcile a bank deposit CSV against the local invoice database.

Usage:
    python -m scripts.reconcile_csv deposits.csv [--db reconcile.db] [--account default]
                                                 [--output results.json] [--seed]

Options:
    --seed      Seed sample unpaid invoices for the account before running
    --output    Write the full report as JSON
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import Settings, get_settings
from core.observability.logging import configure_logging
from remittance.collaborators import build_collaborators
from remittance.db import SqliteInvoiceStore, init_invoice_db, seed_sample_invoices
from remittance.errors import RejectedInputError
from remittance.models import ReconcileReport
from remittance.pipeline import reconcile_upload


STATUS_MARKS = {
    "Completed": "✅",
    "NeedsReview": "⚠️",
    "Error": "❌",
    "Unmatched": "·",
}


def run(args: argparse.Namespace) -> ReconcileReport:
    settings = get_settings()
    db_path = args.db or settings.db_path

    init_invoice_db(db_path)
    if args.seed:
        count = seed_sample_invoices(args.account, db_path=db_path)
        print(f"Seeded {count} sample invoices for account '{args.account}'")

    return asyncio.run(reconcile_file(args.file, args.account, db_path, settings))


async def reconcile_file(path: Path, account_id: str, db_path: Path, settings: Settings) -> ReconcileReport:
    """One run over a local file, closing the text client afterwards."""
    text_client = settings.text_client()
    column_inference, transliterator = build_collaborators(text_client)
    try:
        return await reconcile_upload(
            path.read_bytes(),
            account_id=account_id,
            invoice_store=SqliteInvoiceStore(db_path),
            filename=path.name,
            column_inference=column_inference,
            transliterator=transliterator,
            options=settings.pipeline_options(),
        )
    finally:
        if text_client is not None:
            await text_client.close()


def print_report(report: ReconcileReport) -> None:
    """Print the per-row results and a summary."""
    print("=" * 60)
    print(f"RECONCILIATION {report.run_id}")
    print("=" * 60)

    for result in report.results:
        mark = STATUS_MARKS.get(result.status.value, "")
        invoice = result.matched_invoice_id or "-"
        print(f"{mark} {result.date:<12} {result.amount:>10,}  {invoice:<10} {result.raw_name}")
        print(f"    {result.status.value}: {result.message}")

    print(f"\nRows: {report.total_rows} parsed, {len(report.results)} kept, {report.dropped_rows} dropped")
    print(f"Unpaid invoices: {report.unpaid_invoice_count}")
    print("Summary: " + ", ".join(f"{status}={count}" for status, count in report.summary.items()))


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile a bank deposit CSV against unpaid invoices")
    parser.add_argument("file", type=Path, help="Deposit CSV exported from online banking")
    parser.add_argument("--db", type=Path, help="SQLite invoice database (default: RECONCILE_DB_PATH)")
    parser.add_argument("--account", default="default", help="Acting merchant account id")
    parser.add_argument("--output", type=Path, help="Output JSON file for the report")
    parser.add_argument("--seed", action="store_true", help="Seed sample unpaid invoices first")
    parser.add_argument("--verbose", action="store_true", help="Log pipeline stages")
    args = parser.parse_args()

    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    if not args.file.exists():
        print(f"File not found: {args.file}", file=sys.stderr)
        sys.exit(1)

    try:
        report = run(args)
    except RejectedInputError as e:
        print(f"Rejected ({e.code}): {e.message}", file=sys.stderr)
        sys.exit(1)

    print_report(report)

    if args.output:
        args.output.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        print(f"\nResults written to {args.output}")


if __name__ == "__main__":
    main()
