"""Reconciliation pipeline for bank deposit exports.

Exposes high-level functions:
- validate_upload(content, filename, content_type) -> None
- reconcile_upload(content, ...) -> ReconcileReport

One call is one run: a fresh MatchingEngine (and so a fresh allocation
set) is built for every upload. The only awaited steps are the invoice
load, the column inference call and the batched transliteration call,
each at most once and never inside the row loop.
"""

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional, Sequence

from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from remittance.collaborators import ColumnInference, Transliterator
from remittance.columns import DEFAULT_SAMPLE_SIZE, resolve_column_map
from remittance.db import InvoiceStore
from remittance.decoding import decode_bytes
from remittance.engine import MatchingEngine, extract_row
from remittance.errors import (
    FileTooLargeError,
    MissingFileError,
    RejectedInputError,
    WrongFileTypeError,
)
from remittance.models import (
    AgencyException,
    DEFAULT_AGENCIES,
    MatchingConfig,
    ReconcileReport,
)
from remittance.normalize import canonicalize_names
from remittance.parsing import DEFAULT_MAX_ROWS, parse_rows

logger = get_logger(__name__)


DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024

CSV_EXTENSIONS = (".csv",)
CSV_CONTENT_TYPES = ("text/csv", "application/csv", "application/vnd.ms-excel")


@dataclass
class PipelineOptions:
    """Per-run limits and injectable configuration."""
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    max_rows: int = DEFAULT_MAX_ROWS
    sample_rows: int = DEFAULT_SAMPLE_SIZE
    agencies: Sequence[AgencyException] = field(default_factory=lambda: list(DEFAULT_AGENCIES))
    matching: MatchingConfig = field(default_factory=MatchingConfig)


def is_delimited_table(filename: Optional[str], content_type: Optional[str]) -> bool:
    """Whether the upload declares itself as a CSV file."""
    name = (filename or "").lower()
    ctype = (content_type or "").split(";")[0].strip().lower()
    return name.endswith(CSV_EXTENSIONS) or ctype in CSV_CONTENT_TYPES


def validate_upload(
    content: Optional[bytes],
    filename: Optional[str],
    content_type: Optional[str],
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> None:
    """Reject uploads before any decoding work.

    Raises:
        MissingFileError: No file content was sent
        FileTooLargeError: Content exceeds the size cap
        WrongFileTypeError: Not declared as a CSV file
    """
    if content is None:
        raise MissingFileError("No file was uploaded")
    if len(content) > max_file_bytes:
        raise FileTooLargeError(f"File is too large (limit {max_file_bytes // (1024 * 1024)} MB)")
    if not is_delimited_table(filename, content_type):
        raise WrongFileTypeError("Only CSV files (.csv) can be uploaded")


@contextmanager
def _stage(name: str):
    """Time a pipeline stage and tag its logs."""
    start = time.perf_counter()
    with with_correlation(stage=name):
        yield
    get_metrics().record_processing_time(name, (time.perf_counter() - start) * 1000)


async def reconcile_upload(
    content: Optional[bytes],
    *,
    account_id: str,
    invoice_store: InvoiceStore,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
    column_inference: Optional[ColumnInference] = None,
    transliterator: Optional[Transliterator] = None,
    options: Optional[PipelineOptions] = None,
) -> ReconcileReport:
    """Run the full reconciliation pipeline over one uploaded file.

    Args:
        content: Raw file bytes
        account_id: Acting merchant account (selects the invoice snapshot)
        invoice_store: Read-only source of unpaid invoices
        filename: Declared file name
        content_type: Declared MIME type
        column_inference: Optional column layout collaborator
        transliterator: Optional kanji → katakana collaborator
        options: Limits, agency table and matching thresholds

    Returns:
        ReconcileReport with one result per kept row, in file order

    Raises:
        RejectedInputError: Missing, oversized, wrong-type or too-long files.
            Nothing is processed for a rejected run.
    """
    options = options or PipelineOptions()
    metrics = get_metrics()
    run_id = f"run-{uuid.uuid4().hex[:12]}"

    with with_correlation(run_id=run_id, account_id=account_id, source_file=filename):
        metrics.record_run_started()
        try:
            report = await _run(
                content,
                run_id=run_id,
                account_id=account_id,
                invoice_store=invoice_store,
                filename=filename,
                content_type=content_type,
                column_inference=column_inference,
                transliterator=transliterator,
                options=options,
            )
        except RejectedInputError as e:
            logger.info(f"Upload rejected: {e.message}", extra_fields={"code": e.code})
            metrics.record_run_rejected(e.code)
            raise
        except Exception:
            metrics.record_run_failed()
            raise

        metrics.record_run_completed(
            kept_rows=len(report.results),
            dropped_rows=report.dropped_rows,
            status_counts=report.summary,
        )
        logger.info(
            "Run completed",
            extra_fields={
                "rows": report.total_rows,
                "results": len(report.results),
                "dropped": report.dropped_rows,
                "unpaid_invoices": report.unpaid_invoice_count,
                **report.summary,
            },
        )
        return report


async def _run(
    content: Optional[bytes],
    *,
    run_id: str,
    account_id: str,
    invoice_store: InvoiceStore,
    filename: Optional[str],
    content_type: Optional[str],
    column_inference: Optional[ColumnInference],
    transliterator: Optional[Transliterator],
    options: PipelineOptions,
) -> ReconcileReport:
    validate_upload(content, filename, content_type, options.max_file_bytes)

    with _stage("decode"):
        text = decode_bytes(content)

    with _stage("parse"):
        rows = parse_rows(text, max_rows=options.max_rows)

    with _stage("load_invoices"):
        invoices = await invoice_store.list_unpaid_invoices(account_id)

    with _stage("columns"):
        column_map = await resolve_column_map(rows, column_inference, options.sample_rows)

    with _stage("canonicalize"):
        canonical_names = await canonicalize_names(
            [invoice.client_name for invoice in invoices],
            transliterator,
            options.matching.company_markers,
        )

    with _stage("match"):
        engine = MatchingEngine(
            invoices,
            canonical_names,
            agencies=options.agencies,
            config=options.matching,
        )
        results = []
        dropped = 0
        for index, cells in enumerate(rows):
            row = extract_row(cells, index, column_map, options.matching.max_name_length)
            if row is None:
                dropped += 1
                logger.debug(f"Row {index} dropped")
                continue
            results.append(engine.match_row(row))

    return ReconcileReport(
        run_id=run_id,
        results=results,
        unpaid_invoice_count=engine.unpaid_invoice_count,
        column_map=column_map,
        total_rows=len(rows),
        dropped_rows=dropped,
    )
