"""External text-service collaborators.

Two narrow capabilities are consumed by the pipeline:
- ColumnInference: guess the column layout from a few sample rows
- Transliterator: render kanji names as katakana readings

Both are untrusted and best-effort. The pipeline validates their answers
and falls back to defaults on any failure, so implementations may raise.

The OpenAI-backed implementations are used when an API key is configured.
"""

import json
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import openai

from core.observability.logging import get_logger

logger = get_logger(__name__)


class ColumnInference(Protocol):
    """Protocol for column layout inference."""

    async def infer_columns(self, sample_rows: Sequence[List[str]]) -> Optional[Any]:
        """Propose a column layout.

        Expected return: a ColumnMap, or a dict with dateCol/amountCol/nameCol
        (or date_col/amount_col/name_col) integer indices, or None.
        """
        ...


class Transliterator(Protocol):
    """Protocol for phonetic transliteration of kanji names."""

    async def transliterate(self, names: Sequence[str]) -> List[str]:
        """Return one katakana reading per name, in the same order.

        May return fewer readings than names.
        """
        ...


COLUMN_PROMPT = """The following rows are from a Japanese bank deposit CSV export (no header).
Identify the 0-based column index of the transaction date, the deposit amount and the payer name.
Reply with JSON only, in the form {{"dateCol": 0, "amountCol": 2, "nameCol": 3}}.

Rows:
{rows}"""

TRANSLITERATION_PROMPT = """Convert each of the following Japanese names to its reading in full-width katakana,
as it would appear as a payer name on a bank transfer. Company type words such as 株式会社 must be read too
(株式会社 → カブシキガイシャ).
Reply with exactly one reading per line, in the same order, with no numbering and no other text.

{names}"""


def parse_json_str(raw_text: str) -> Dict[str, Any]:
    """Parse JSON from LLM response, extracting JSON block if needed."""
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError:
        start = raw_text.find("{")
        end = raw_text.rfind("}")
        if start >= 0 and end > start:
            return json.loads(raw_text[start:end + 1])
        raise


def split_reading_lines(raw_text: str) -> List[str]:
    """Split a line-per-name answer, dropping code fences and list numbering."""
    lines = []
    for line in raw_text.strip().splitlines():
        if line.strip().startswith("```"):
            continue
        lines.append(re.sub(r"^\s*\d+[.)、]\s*", "", line).strip())
    return lines


class OpenAITextClient:
    """Thin async wrapper over the chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        self.model = model
        self._client = client or openai.AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=2)

    async def complete(self, prompt: str, max_tokens: int = 500) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        await self._client.close()


class OpenAIColumnInference:
    """Column inference backed by a chat model."""

    def __init__(self, text_client: OpenAITextClient):
        self.text_client = text_client

    async def infer_columns(self, sample_rows: Sequence[List[str]]) -> Optional[Dict[str, Any]]:
        rows = "\n".join(json.dumps(list(row), ensure_ascii=False) for row in sample_rows)
        raw = await self.text_client.complete(COLUMN_PROMPT.format(rows=rows), max_tokens=100)
        if not raw.strip():
            return None
        parsed = parse_json_str(raw)
        logger.debug("Column inference answer", extra_fields={"answer": parsed})
        return parsed


class OpenAITransliterator:
    """Kanji → katakana transliteration backed by a chat model.

    All names go out in one request; the answer is one reading per line.
    """

    def __init__(self, text_client: OpenAITextClient):
        self.text_client = text_client

    async def transliterate(self, names: Sequence[str]) -> List[str]:
        if not names:
            return []
        prompt = TRANSLITERATION_PROMPT.format(names="\n".join(names))
        # Readings are short; allow ~40 tokens per name
        raw = await self.text_client.complete(prompt, max_tokens=max(200, 40 * len(names)))
        return split_reading_lines(raw)


def build_collaborators(
    text_client: Optional[OpenAITextClient],
) -> Tuple[Optional[ColumnInference], Optional[Transliterator]]:
    """Column inference and transliteration sharing one text client.

    Returns (None, None) without a client, so runs use defaults.
    """
    if text_client is None:
        return None, None
    return OpenAIColumnInference(text_client), OpenAITransliterator(text_client)
