"""Remittance Reconciliation Data Models.

This module defines the Pydantic models used across the reconciliation
pipeline:
- RemittanceRow: One kept line of the bank deposit export
- UnpaidInvoice: Read-only invoice snapshot loaded at run start
- AgencyException: Fixed-amount bulk transfer intermediary
- ColumnMap: Which cell holds date / amount / payer name
- ReconcileResult: Per-row proposal returned to the reviewer
- ReconcileReport: Ordered results plus run metadata
- MatchingConfig: Thresholds and name cleanup tokens
"""

from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class ReconcileStatus(str, Enum):
    """Outcome of matching a single remittance row."""
    COMPLETED = "Completed"        # Agency amount OK, or name matched well
    NEEDS_REVIEW = "NeedsReview"   # Amount matched, name is weak
    ERROR = "Error"                # Business mismatch (agency amount wrong)
    UNMATCHED = "Unmatched"        # No invoice available at this amount


class RemittanceRow(BaseModel):
    """A single remittance extracted from one parsed CSV row."""
    row_index: int = Field(..., description="0-based position in the parsed table")
    raw_date: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Whole currency units")
    raw_name: str = Field(..., min_length=1)


class UnpaidInvoice(BaseModel):
    """Invoice snapshot consulted during a run. Never mutated by the engine."""
    model_config = ConfigDict(frozen=True)

    id: str
    total_amount: int
    issue_date: date
    client_name: str = ""


class AgencyException(BaseModel):
    """Known intermediary matched by substring with a fixed expected amount.

    Rows whose payer name contains ``match_token`` bypass invoice matching
    entirely and are judged only on the amount.
    """
    model_config = ConfigDict(frozen=True)

    label: str = Field(..., description="Display name of the agency")
    match_token: str = Field(..., min_length=1, description="Substring tested against the raw payer name")
    expected_amount: int = Field(..., gt=0)


DEFAULT_AGENCIES: Tuple[AgencyException, ...] = (
    AgencyException(label="リコーリース", match_token="ﾘｺ-ﾘ-ｽ", expected_amount=850000),
)


class ColumnMap(BaseModel):
    """Cell indices for the date, amount and payer name columns."""
    model_config = ConfigDict(frozen=True)

    date_col: int = Field(default=0, ge=0)
    amount_col: int = Field(default=2, ge=0)
    name_col: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def _check_distinct(self) -> "ColumnMap":
        if len({self.date_col, self.amount_col, self.name_col}) != 3:
            raise ValueError("date, amount and name columns must be distinct")
        return self

    @property
    def required_width(self) -> int:
        """Minimum number of cells a row needs to be readable with this map."""
        return max(self.date_col, self.amount_col, self.name_col) + 1


DEFAULT_COLUMN_MAP = ColumnMap()


class ReconcileResult(BaseModel):
    """Proposal for one remittance row.

    A result is never a committed payment. Rows that are Completed or
    NeedsReview with an attached invoice may be confirmed by a separate step.
    """
    model_config = ConfigDict(frozen=True)

    date: str
    amount: int
    raw_name: str
    status: ReconcileStatus
    message: str
    matched_invoice_id: Optional[str] = None
    matched_client_name: Optional[str] = None
    score: Optional[float] = Field(default=None, description="Name similarity of the selected invoice (0-1)")

    @computed_field
    @property
    def is_confirmable(self) -> bool:
        return (
            self.status in (ReconcileStatus.COMPLETED, ReconcileStatus.NEEDS_REVIEW)
            and self.matched_invoice_id is not None
            and bool(self.date)
        )


class ReconcileReport(BaseModel):
    """Ordered results of one run plus run metadata."""
    run_id: str
    results: List[ReconcileResult] = Field(default_factory=list)
    unpaid_invoice_count: int = 0
    column_map: ColumnMap = DEFAULT_COLUMN_MAP
    total_rows: int = Field(default=0, description="Rows produced by the parser")
    dropped_rows: int = Field(default=0, description="Rows failing the keep preconditions")

    @computed_field
    @property
    def summary(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ReconcileStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts


# =============================================================================
# Matching Configuration
# =============================================================================

class MatchingConfig(BaseModel):
    """Configuration for the name matching step.

    Thresholds are calibrated for the bigram Dice coefficient.
    """
    # Score thresholds
    name_match_threshold: float = Field(
        default=0.5,
        description="Min score for a Completed match",
    )
    spelling_variant_threshold: float = Field(
        default=0.35,
        description="Min score for the 'spelling differs' review tier",
    )

    # Name cleanup
    company_markers: Tuple[str, ...] = Field(
        default=("（カ）", "(カ)", "(ｶ)", "カ）", "カ)", "ｶ)"),
        description="Bank abbreviations for a company prefix/suffix, removed before comparison",
    )
    max_name_length: int = Field(default=200, description="Longer payer names are dropped")


DEFAULT_MATCHING_CONFIG = MatchingConfig()
