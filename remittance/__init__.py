"""Remittance Reconciliation - Match bank deposits to unpaid invoices.

This package turns a bank's deposit CSV export into per-row match
proposals against the account's unpaid invoices:
- Encoding detection (UTF-8 with BOM, UTF-8, Shift_JIS/cp932)
- Column layout inference with a safe default
- Payer name normalization (half-width kana, company markers)
- Exact-amount candidate filtering with first-in first-out allocation
- Bigram similarity scoring and tiered statuses
- Fixed-amount agency exceptions

Results are proposals only. Nothing here writes payments.

Usage:
    from remittance import reconcile_upload, SqliteInvoiceStore

    report = await reconcile_upload(
        csv_bytes,
        filename="deposits.csv",
        content_type="text/csv",
        account_id="acct-001",
        invoice_store=SqliteInvoiceStore("reconcile.db"),
    )

    for result in report.results:
        print(result.status.value, result.message)
"""

from remittance.models import (
    AgencyException,
    ColumnMap,
    DEFAULT_AGENCIES,
    DEFAULT_COLUMN_MAP,
    DEFAULT_MATCHING_CONFIG,
    MatchingConfig,
    ReconcileReport,
    ReconcileResult,
    ReconcileStatus,
    RemittanceRow,
    UnpaidInvoice,
)
from remittance.errors import (
    FileTooLargeError,
    MissingFileError,
    ReconcileError,
    RejectedInputError,
    TooManyRowsError,
    UnauthenticatedError,
    WrongFileTypeError,
)
from remittance.engine import MatchingEngine, parse_amount
from remittance.normalize import calculate_string_similarity, normalize_name
from remittance.pipeline import PipelineOptions, reconcile_upload, validate_upload
from remittance.db import (
    InvoiceStore,
    SqliteInvoiceStore,
    add_invoice,
    fetch_unpaid_invoices,
    init_invoice_db,
    seed_sample_invoices,
)

__all__ = [
    # Models
    "AgencyException",
    "ColumnMap",
    "DEFAULT_AGENCIES",
    "DEFAULT_COLUMN_MAP",
    "DEFAULT_MATCHING_CONFIG",
    "MatchingConfig",
    "ReconcileReport",
    "ReconcileResult",
    "ReconcileStatus",
    "RemittanceRow",
    "UnpaidInvoice",
    # Errors
    "ReconcileError",
    "UnauthenticatedError",
    "RejectedInputError",
    "MissingFileError",
    "WrongFileTypeError",
    "FileTooLargeError",
    "TooManyRowsError",
    # Matching
    "MatchingEngine",
    "parse_amount",
    "normalize_name",
    "calculate_string_similarity",
    # Pipeline
    "PipelineOptions",
    "reconcile_upload",
    "validate_upload",
    # Database
    "InvoiceStore",
    "SqliteInvoiceStore",
    "init_invoice_db",
    "add_invoice",
    "fetch_unpaid_invoices",
    "seed_sample_invoices",
]
