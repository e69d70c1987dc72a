"""Remittance Matching & Allocation Engine.

This module implements the per-row matching algorithm:
1. Drop rows without a date, a payer name or a positive amount
2. Agency rows are judged on their fixed amount only (fast path)
3. Otherwise, candidates are unpaid invoices with exactly the same amount
   that have not been allocated earlier in this run
4. Candidates are ranked by payer/client name similarity; the best one is
   allocated to the row whatever its score, and the score only decides
   between Completed and NeedsReview

Allocation state lives in an AllocationSet owned by one engine instance,
so one engine is built per run and rows must be fed in file order.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from core.observability.logging import get_logger
from remittance.models import (
    AgencyException,
    ColumnMap,
    DEFAULT_AGENCIES,
    DEFAULT_COLUMN_MAP,
    DEFAULT_MATCHING_CONFIG,
    MatchingConfig,
    ReconcileResult,
    ReconcileStatus,
    RemittanceRow,
    UnpaidInvoice,
)
from remittance.normalize import calculate_string_similarity, normalize_name

logger = get_logger(__name__)


_AMOUNT_PATTERN = re.compile(r"\+?(\d+)(?:\.0*)?")


class AllocationSet:
    """Invoice ids already claimed by a row in the current run."""

    def __init__(self):
        self._claimed: Set[str] = set()

    def add(self, invoice_id: str) -> None:
        if invoice_id in self._claimed:
            raise ValueError(f"Invoice {invoice_id} already allocated in this run")
        self._claimed.add(invoice_id)

    def __contains__(self, invoice_id: object) -> bool:
        return invoice_id in self._claimed

    def __len__(self) -> int:
        return len(self._claimed)


@dataclass
class ScoredCandidate:
    """An amount-matching invoice with its name similarity."""
    invoice: UnpaidInvoice
    canonical_name: str
    score: float


# =============================================================================
# Row Extraction
# =============================================================================

def parse_amount(cell: str) -> Optional[int]:
    """Parse a deposit amount cell into whole currency units.

    Accepts full-width digits, thousands separators, a currency marker and
    a zero fractional part ("110,000", "１１００００円", "5000.00").

    Returns:
        Positive integer amount, or None if the cell is not one
    """
    if not cell:
        return None
    text = unicodedata.normalize("NFKC", cell)
    for token in (",", "円", "¥"):
        text = text.replace(token, "")
    match = _AMOUNT_PATTERN.fullmatch(text.strip())
    if not match:
        return None
    amount = int(match.group(1))
    return amount if amount > 0 else None


def extract_row(
    cells: Sequence[str],
    row_index: int,
    column_map: ColumnMap = DEFAULT_COLUMN_MAP,
    max_name_length: int = DEFAULT_MATCHING_CONFIG.max_name_length,
) -> Optional[RemittanceRow]:
    """Build a RemittanceRow, or None if the row should be dropped.

    Dropped rows are ledger noise (headers, totals, blank memo lines),
    not errors.
    """
    if len(cells) < column_map.required_width:
        return None

    raw_date = (cells[column_map.date_col] or "").strip()
    raw_name = (cells[column_map.name_col] or "").strip()
    amount = parse_amount(cells[column_map.amount_col])

    if not raw_date or not raw_name or len(raw_name) > max_name_length or amount is None:
        return None

    return RemittanceRow(row_index=row_index, raw_date=raw_date, amount=amount, raw_name=raw_name)


def find_agency(raw_name: str, agencies: Iterable[AgencyException]) -> Optional[AgencyException]:
    """First agency whose token appears in the payer name."""
    for agency in agencies:
        if agency.match_token in raw_name:
            return agency
    return None


def classify_score(
    score: float,
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> Tuple[ReconcileStatus, str]:
    """Map a name similarity score to a status and message prefix.

    Examples:
        >>> classify_score(0.5)[0]
        <ReconcileStatus.COMPLETED: 'Completed'>
        >>> classify_score(0.499)[1]
        'Candidate found, name spelling differs'
    """
    if score >= config.name_match_threshold:
        return ReconcileStatus.COMPLETED, "Matched by name"
    if score >= config.spelling_variant_threshold:
        return ReconcileStatus.NEEDS_REVIEW, "Candidate found, name spelling differs"
    return ReconcileStatus.NEEDS_REVIEW, "Candidate found, only amount matches"


# =============================================================================
# Matching Engine
# =============================================================================

class MatchingEngine:
    """Matches remittance rows against one run's unpaid invoice snapshot.

    Example:
        engine = MatchingEngine(invoices, canonical_names)
        results = [engine.match_row(row) for row in rows]

    Args:
        invoices: Unpaid invoice snapshot for the run
        canonical_names: Canonical client name per invoice, aligned with
            ``invoices``. Defaults to plain normalization (no transliteration).
        agencies: Fixed-amount agency table
        config: Matching thresholds and name cleanup tokens
    """

    def __init__(
        self,
        invoices: Sequence[UnpaidInvoice],
        canonical_names: Optional[Sequence[str]] = None,
        agencies: Sequence[AgencyException] = DEFAULT_AGENCIES,
        config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
    ):
        if canonical_names is None:
            canonical_names = [normalize_name(inv.client_name, config.company_markers) for inv in invoices]
        if len(canonical_names) != len(invoices):
            raise ValueError("canonical_names must align with invoices")

        # FIFO order: earliest issue date first, id breaks same-day ties
        pool = sorted(zip(invoices, canonical_names), key=lambda pair: (pair[0].issue_date, pair[0].id))
        self._pool: List[Tuple[UnpaidInvoice, str]] = pool
        self.agencies = tuple(agencies)
        self.config = config
        self.allocations = AllocationSet()

    @property
    def unpaid_invoice_count(self) -> int:
        return len(self._pool)

    def match_row(self, row: RemittanceRow) -> ReconcileResult:
        """Produce the proposal for one row, allocating an invoice if any."""
        agency = find_agency(row.raw_name, self.agencies)
        if agency is not None:
            return self._agency_result(row, agency)

        canonical_payer = normalize_name(row.raw_name, self.config.company_markers)
        candidates = self._score_candidates(canonical_payer, row.amount)

        if not candidates:
            return self._result(row, ReconcileStatus.UNMATCHED, self._unmatched_message(row.amount))

        # Highest score wins; ties go to the earliest-issued invoice, then lowest id
        best = min(candidates, key=lambda c: (-c.score, c.invoice.issue_date, c.invoice.id))
        self.allocations.add(best.invoice.id)

        status, prefix = classify_score(best.score, self.config)
        logger.debug(
            f"Row {row.row_index} allocated invoice {best.invoice.id}",
            extra_fields={
                "score": round(best.score, 3),
                "status": status.value,
                "candidates": len(candidates),
            },
        )
        return self._result(
            row,
            status,
            f"{prefix}: {best.invoice.client_name}",
            invoice=best.invoice,
            score=best.score,
        )

    def match_rows(self, rows: Iterable[RemittanceRow]) -> List[ReconcileResult]:
        return [self.match_row(row) for row in rows]

    def _score_candidates(self, canonical_payer: str, amount: int) -> List[ScoredCandidate]:
        return [
            ScoredCandidate(
                invoice=invoice,
                canonical_name=canonical_name,
                score=calculate_string_similarity(canonical_payer, canonical_name),
            )
            for invoice, canonical_name in self._pool
            if invoice.total_amount == amount and invoice.id not in self.allocations
        ]

    def _unmatched_message(self, amount: int) -> str:
        if not self._pool:
            return "No unpaid invoices"
        if any(invoice.total_amount == amount for invoice, _ in self._pool):
            return "No unpaid invoice left at this amount (already allocated to an earlier row)"
        return "No unpaid invoice at this amount"

    def _agency_result(self, row: RemittanceRow, agency: AgencyException) -> ReconcileResult:
        if row.amount == agency.expected_amount:
            return self._result(row, ReconcileStatus.COMPLETED, f"Direct debit OK ({agency.label})")
        return self._result(
            row,
            ReconcileStatus.ERROR,
            f"Amount mismatch, expected {agency.expected_amount} ({agency.label})",
        )

    @staticmethod
    def _result(
        row: RemittanceRow,
        status: ReconcileStatus,
        message: str,
        invoice: Optional[UnpaidInvoice] = None,
        score: Optional[float] = None,
    ) -> ReconcileResult:
        return ReconcileResult(
            date=row.raw_date,
            amount=row.amount,
            raw_name=row.raw_name,
            status=status,
            message=message,
            matched_invoice_id=invoice.id if invoice else None,
            matched_client_name=invoice.client_name if invoice else None,
            score=score,
        )
