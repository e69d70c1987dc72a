"""Invoice Store Database Operations.

This module handles the read side of the invoice table used by the
reconciliation pipeline:
- Schema initialization
- Read-only fetch of unpaid invoices for an account
- Sample data seeding for local development

Confirmed payments and invoice status changes are written elsewhere; the
reconciliation pipeline never writes to this table.
"""

import asyncio
import sqlite3
from datetime import date
from pathlib import Path
from typing import Iterable, List, Protocol

from remittance.models import UnpaidInvoice


# Default database path (repo root)
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "reconcile.db"

UNPAID_STATUSES = ("unpaid", "partially_paid")


class InvoiceStore(Protocol):
    """Protocol for loading the run's invoice snapshot."""

    async def list_unpaid_invoices(self, account_id: str) -> List[UnpaidInvoice]:
        """Unpaid and partially paid invoices, oldest issue date first."""
        ...


def init_invoice_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize the invoice table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS invoices (
                id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                client_name TEXT NOT NULL DEFAULT '',
                total_amount INTEGER NOT NULL,
                issue_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'unpaid'
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_invoices_account_status
            ON invoices(account_id, status, issue_date)
        """)

        conn.commit()
    finally:
        conn.close()


def add_invoice(
    account_id: str,
    invoice: UnpaidInvoice,
    status: str = "unpaid",
    db_path: Path = DEFAULT_DB_PATH,
) -> None:
    """Insert or replace one invoice row (development and tests)."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("""
            INSERT OR REPLACE INTO invoices
            (id, account_id, client_name, total_amount, issue_date, status)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            invoice.id,
            account_id,
            invoice.client_name,
            invoice.total_amount,
            invoice.issue_date.isoformat(),
            status,
        ))
        conn.commit()
    finally:
        conn.close()


def fetch_unpaid_invoices(account_id: str, db_path: Path = DEFAULT_DB_PATH) -> List[UnpaidInvoice]:
    """Read unpaid invoices for an account, oldest issue date first.

    Args:
        account_id: Acting merchant account
        db_path: Path to database

    Returns:
        List of UnpaidInvoice snapshots
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        placeholders = ", ".join("?" for _ in UNPAID_STATUSES)
        cursor = conn.execute(f"""
            SELECT id, client_name, total_amount, issue_date
            FROM invoices
            WHERE account_id = ? AND status IN ({placeholders})
            ORDER BY issue_date ASC, id ASC
        """, (account_id, *UNPAID_STATUSES))

        return [
            UnpaidInvoice(
                id=row["id"],
                client_name=row["client_name"] or "",
                total_amount=row["total_amount"],
                issue_date=date.fromisoformat(row["issue_date"]),
            )
            for row in cursor.fetchall()
        ]
    finally:
        conn.close()


class SqliteInvoiceStore:
    """InvoiceStore backed by the local SQLite database."""

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = db_path

    async def list_unpaid_invoices(self, account_id: str) -> List[UnpaidInvoice]:
        # sqlite3 is blocking; keep the event loop free
        return await asyncio.to_thread(fetch_unpaid_invoices, account_id, self.db_path)


# =============================================================================
# Sample Data
# =============================================================================

SAMPLE_INVOICES = [
    UnpaidInvoice(id="INV-0001", client_name="株式会社サンプル", total_amount=110000, issue_date=date(2025, 1, 10)),
    UnpaidInvoice(id="INV-0002", client_name="ヤマダ タロウ", total_amount=85000, issue_date=date(2025, 1, 15)),
    UnpaidInvoice(id="INV-0003", client_name="サトウ イチロウ", total_amount=85000, issue_date=date(2025, 2, 1)),
    UnpaidInvoice(id="INV-0004", client_name="タナカ ハナコ", total_amount=100000, issue_date=date(2025, 2, 10)),
]


def seed_sample_invoices(
    account_id: str = "default",
    invoices: Iterable[UnpaidInvoice] = SAMPLE_INVOICES,
    db_path: Path = DEFAULT_DB_PATH,
) -> int:
    """Seed sample unpaid invoices for local development.

    Returns:
        Number of invoices written
    """
    init_invoice_db(db_path)
    count = 0
    for invoice in invoices:
        add_invoice(account_id, invoice, db_path=db_path)
        count += 1
    return count
