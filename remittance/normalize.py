"""Name Canonicalization Utilities.

This module turns payer names from bank exports and client names from
invoices into a comparable form. The canonicalization process:
1. Removes all whitespace (including the full-width space)
2. Removes brackets and bank company markers such as "カ）"
3. Converts half-width katakana to full-width katakana

Client names written in kanji are additionally transliterated to katakana
through a single batched collaborator call per run.

Examples:
    "ｶ)ｻﾝﾌﾟﾙ"          → "サンプル"
    "ヤマダ タロウ（カ）" → "ヤマダタロウ"
    "カブシキガイシャ サンプル" → "カブシキガイシャサンプル"
"""

import re
import unicodedata
from collections import Counter
from functools import lru_cache
from typing import Dict, List, Optional, Sequence

from core.observability.logging import get_logger
from core.observability.metrics import record_collaborator_fallback
from remittance.collaborators import Transliterator
from remittance.models import DEFAULT_MATCHING_CONFIG

logger = get_logger(__name__)


BRACKETS = "()（）[]［］「」｢｣【】"

HALFWIDTH_KATAKANA = re.compile(r"[\uff61-\uff9f]+")

# CJK Unified Ideographs, Extension A and Compatibility Ideographs
IDEOGRAPHS = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")


@lru_cache(maxsize=16)
def _cleanup_pattern(markers: tuple) -> "re.Pattern[str]":
    # Longest markers first so "（カ）" wins over a bare bracket
    alternatives = [re.escape(m) for m in sorted(markers, key=len, reverse=True) if m]
    alternatives.append(r"\s")
    alternatives.append("[" + re.escape(BRACKETS) + "]")
    return re.compile("|".join(alternatives))


def to_fullwidth_katakana(text: str) -> str:
    """Convert half-width katakana runs to full-width, leaving other text alone.

    Voiced sound marks compose with the preceding kana ("ｶﾞ" → "ガ").
    """
    return HALFWIDTH_KATAKANA.sub(lambda m: unicodedata.normalize("NFKC", m.group(0)), text)


def normalize_name(name: str, company_markers: Sequence[str] = DEFAULT_MATCHING_CONFIG.company_markers) -> str:
    """Normalize a payer or client name for matching.

    Idempotent as long as every company marker contains a bracket
    character: brackets are gone after one pass, so no marker can reform.

    Args:
        name: Raw name
        company_markers: Tokens removed along with whitespace and brackets

    Returns:
        Canonical name string (empty for empty input)

    Examples:
        >>> normalize_name("ﾔﾏﾀﾞ ﾀﾛｳ")
        'ヤマダタロウ'
        >>> normalize_name("ヤマダ　タロウ（カ）")
        'ヤマダタロウ'
    """
    if not name:
        return ""

    text = _cleanup_pattern(tuple(company_markers)).sub("", name)
    return to_fullwidth_katakana(text)


def contains_ideographs(text: str) -> bool:
    """Whether a name needs transliteration before comparison."""
    return bool(text) and IDEOGRAPHS.search(text) is not None


def calculate_string_similarity(s1: str, s2: str) -> float:
    """Dice coefficient over character bigrams.

    Whitespace is ignored. Identical strings score 1.0; strings shorter than
    two characters cannot share a bigram and score 0.0 unless identical.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Similarity score from 0.0 to 1.0
    """
    s1 = re.sub(r"\s+", "", s1 or "")
    s2 = re.sub(r"\s+", "", s2 or "")

    if s1 == s2:
        return 1.0 if s1 else 0.0
    if len(s1) < 2 or len(s2) < 2:
        return 0.0

    bigrams1 = Counter(s1[i:i + 2] for i in range(len(s1) - 1))
    bigrams2 = Counter(s2[i:i + 2] for i in range(len(s2) - 1))
    overlap = sum((bigrams1 & bigrams2).values())

    return 2.0 * overlap / (len(s1) + len(s2) - 2)


async def canonicalize_names(
    names: Sequence[str],
    transliterator: Optional[Transliterator] = None,
    company_markers: Sequence[str] = DEFAULT_MATCHING_CONFIG.company_markers,
) -> List[str]:
    """Canonicalize a batch of client names, transliterating kanji names.

    All names containing ideographs are sent to the transliterator in one
    call, deduplicated, in first-seen order. Readings are zipped back by
    position. A failed call, a short answer or a blank line leaves the
    affected names in their plain normalized form. Never raises.

    Args:
        names: Client names in pool order
        transliterator: Optional phonetic transliteration collaborator
        company_markers: Tokens removed during normalization

    Returns:
        Canonical names aligned with ``names``
    """
    normalized = [normalize_name(n, company_markers) for n in names]

    # dict keeps first-seen order
    pending = list(dict.fromkeys(name for name in normalized if contains_ideographs(name)))

    if not pending or transliterator is None:
        return normalized

    try:
        readings = list(await transliterator.transliterate(pending) or [])
    except Exception as e:
        logger.warning(f"Transliteration failed, comparing untransliterated names: {e}")
        record_collaborator_fallback("transliteration")
        return normalized

    if len(readings) < len(pending):
        logger.warning(
            "Transliteration returned fewer readings than requested",
            extra_fields={"requested": len(pending), "received": len(readings)},
        )
        record_collaborator_fallback("transliteration")

    reading_for: Dict[str, str] = {}
    for name, reading in zip(pending, readings):
        canonical_reading = normalize_name(str(reading).strip(), company_markers)
        if canonical_reading:
            reading_for[name] = canonical_reading

    return [reading_for.get(name, name) for name in normalized]
