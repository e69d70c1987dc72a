"""Column role resolution.

Most bank exports put the date, amount and payer name in columns 0, 2
and 3. A column inference collaborator may propose a different layout
from a few sample rows; its answer is untrusted and only used when it is
structurally valid.
"""

from typing import Any, List, Optional, Sequence

from core.observability.logging import get_logger
from core.observability.metrics import record_collaborator_fallback
from remittance.collaborators import ColumnInference
from remittance.models import ColumnMap, DEFAULT_COLUMN_MAP

logger = get_logger(__name__)

SAMPLE_MIN_CELLS = 3
DEFAULT_SAMPLE_SIZE = 5

# Accepted spellings for each role in a collaborator answer
_ROLE_KEYS = {
    "date_col": ("date_col", "dateCol"),
    "amount_col": ("amount_col", "amountCol"),
    "name_col": ("name_col", "nameCol"),
}


def select_sample(rows: Sequence[List[str]], size: int = DEFAULT_SAMPLE_SIZE) -> List[List[str]]:
    """First ``size`` rows that have at least three cells."""
    return [list(row) for row in rows if len(row) >= SAMPLE_MIN_CELLS][:size]


def validate_column_map(candidate: Any, sample: Sequence[List[str]]) -> Optional[ColumnMap]:
    """Turn a collaborator answer into a ColumnMap, or None if unusable.

    A candidate is accepted only if all three indices are present integers,
    non-negative, distinct, and inside the widest sample row.
    """
    if isinstance(candidate, ColumnMap):
        values = candidate.model_dump()
    elif isinstance(candidate, dict):
        values = {}
        for role, keys in _ROLE_KEYS.items():
            value = next((candidate[k] for k in keys if k in candidate), None)
            values[role] = value
    else:
        return None

    for value in values.values():
        # bool is an int subclass; True/False are not column indices
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            return None

    if len(set(values.values())) != 3:
        return None

    width = max((len(row) for row in sample), default=0)
    if max(values.values()) >= width:
        return None

    return ColumnMap(**values)


async def resolve_column_map(
    rows: Sequence[List[str]],
    inference: Optional[ColumnInference] = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> ColumnMap:
    """Decide the column layout for this run.

    Calls the inference collaborator at most once. Any failure, malformed
    answer or missing sample falls back to the default map.

    Args:
        rows: Parsed rows
        inference: Optional column inference collaborator
        sample_size: Number of sample rows sent to the collaborator

    Returns:
        ColumnMap to use for every row of the run
    """
    if inference is None:
        return DEFAULT_COLUMN_MAP

    sample = select_sample(rows, sample_size)
    if not sample:
        logger.debug("No usable sample rows, using default columns")
        return DEFAULT_COLUMN_MAP

    try:
        candidate = await inference.infer_columns(sample)
    except Exception as e:
        logger.warning(f"Column inference failed, using default columns: {e}")
        record_collaborator_fallback("column_inference")
        return DEFAULT_COLUMN_MAP

    if candidate is None:
        return DEFAULT_COLUMN_MAP

    column_map = validate_column_map(candidate, sample)
    if column_map is None:
        logger.warning(
            "Column inference returned an invalid map, using default columns",
            extra_fields={"candidate": str(candidate)[:200]},
        )
        record_collaborator_fallback("column_inference")
        return DEFAULT_COLUMN_MAP

    logger.info(
        "Using inferred columns",
        extra_fields={
            "date_col": column_map.date_col,
            "amount_col": column_map.amount_col,
            "name_col": column_map.name_col,
        },
    )
    return column_map
