"""Character encoding recovery for bank exports.

Japanese bank CSVs arrive as UTF-8 (with or without BOM) or as Shift_JIS.
Decoding never fails: a few unreadable glyphs must not block a run.
"""

import codecs

from core.observability.logging import get_logger

logger = get_logger(__name__)

# cp932 is the Windows superset of Shift_JIS that bank portals actually emit
LEGACY_ENCODING = "cp932"
REPLACEMENT_CHAR = "\ufffd"


def decode_bytes(data: bytes) -> str:
    """Decode a raw upload into text.

    1. UTF-8 BOM present: decode as UTF-8, drop the BOM
    2. Otherwise decode as UTF-8
    3. If that produced replacement characters, re-decode as Shift_JIS

    Args:
        data: Raw file content

    Returns:
        Decoded text (possibly with replacement characters if neither
        encoding fits cleanly)
    """
    if data.startswith(codecs.BOM_UTF8):
        return data[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")

    text = data.decode("utf-8", errors="replace")
    if REPLACEMENT_CHAR not in text:
        return text

    logger.debug("UTF-8 decode lossy, retrying as Shift_JIS", extra_fields={"size_bytes": len(data)})
    return data.decode(LEGACY_ENCODING, errors="replace")
