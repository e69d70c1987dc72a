"""CSV parsing for decoded bank exports.

Exports are header-less, comma-delimited, with standard double-quote
quoting. Blank lines carry no information and are skipped.
"""

import csv
import io
from typing import List

from remittance.errors import TooManyRowsError

DEFAULT_MAX_ROWS = 10_000


def parse_rows(text: str, max_rows: int = DEFAULT_MAX_ROWS) -> List[List[str]]:
    """Split decoded text into rows of string cells.

    Args:
        text: Decoded CSV text
        max_rows: Reject the whole file when it has more non-empty rows

    Returns:
        Non-empty rows in file order

    Raises:
        TooManyRowsError: If the row cap is exceeded
    """
    rows: List[List[str]] = []
    reader = csv.reader(io.StringIO(text, newline=""))

    for row in reader:
        if not any(cell.strip() for cell in row):
            continue
        if len(rows) >= max_rows:
            raise TooManyRowsError(f"CSV has too many rows (limit {max_rows})")
        rows.append(row)

    return rows
