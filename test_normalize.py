"""
Name Canonicalization Tests

Validates payer/client name normalization, the bigram similarity score,
and batched transliteration with fallback.
"""

import asyncio

import pytest

from core.observability.metrics import MetricsCollector
from remittance.normalize import (
    calculate_string_similarity,
    canonicalize_names,
    contains_ideographs,
    normalize_name,
    to_fullwidth_katakana,
)


class FakeTransliterator:
    """Records calls and answers from a fixed reading table."""

    def __init__(self, readings=None, fail=False):
        self.readings = readings or {}
        self.fail = fail
        self.calls = []

    async def transliterate(self, names):
        self.calls.append(list(names))
        if self.fail:
            raise RuntimeError("service unavailable")
        return [self.readings.get(name, "") for name in names]


class TestNormalizeName:
    """Test payer name cleanup."""

    def test_halfwidth_katakana_becomes_fullwidth(self):
        assert normalize_name("ﾔﾏﾀﾞ ﾀﾛｳ") == "ヤマダタロウ"

    def test_voiced_marks_compose(self):
        assert to_fullwidth_katakana("ｶﾞｷﾞﾊﾟ") == "ガギパ"

    def test_non_katakana_text_untouched_by_width_conversion(self):
        assert to_fullwidth_katakana("ABC１２３") == "ABC１２３"

    def test_whitespace_removed(self):
        assert normalize_name("ヤマダ　タロウ ") == "ヤマダタロウ"

    @pytest.mark.parametrize("raw", [
        "ｶ)ｻﾝﾌﾟﾙ",
        "カ）サンプル",
        "サンプル（カ）",
        "(ｶ)ｻﾝﾌﾟﾙ",
        "（サンプル）",
    ])
    def test_company_markers_and_brackets_removed(self, raw):
        assert normalize_name(raw) == "サンプル"

    def test_empty_name(self):
        assert normalize_name("") == ""

    @pytest.mark.parametrize("raw", [
        "ｶ)ｻﾝﾌﾟﾙ",
        "ヤマダ　タロウ（カ）",
        "ｶｶ))ﾔﾏﾀﾞ",
        "(ｶ(ｶ))ﾀﾅｶ",
        "株式会社サンプル",
        "ABC Trading (カ)",
    ])
    def test_idempotent(self, raw):
        once = normalize_name(raw)
        assert normalize_name(once) == once

    def test_custom_markers(self):
        assert normalize_name("ユ）ヤマダ", company_markers=("ユ）",)) == "ヤマダ"

    def test_contains_ideographs(self):
        assert contains_ideographs("株式会社サンプル")
        assert not contains_ideographs("カブシキガイシャサンプル")
        assert not contains_ideographs("")


class TestStringSimilarity:
    """Test the bigram Dice coefficient."""

    def test_identical(self):
        assert calculate_string_similarity("ヤマダタロウ", "ヤマダタロウ") == 1.0

    def test_whitespace_ignored(self):
        assert calculate_string_similarity("ヤマダ タロウ", "ヤマダタロウ") == 1.0

    def test_disjoint(self):
        assert calculate_string_similarity("アイウ", "カキク") == 0.0

    def test_exact_half(self):
        # AB,BC vs AB,BX share one bigram of four
        assert calculate_string_similarity("ABC", "ABX") == pytest.approx(0.5)

    def test_short_strings(self):
        assert calculate_string_similarity("ア", "イ") == 0.0
        assert calculate_string_similarity("ア", "ア") == 1.0
        assert calculate_string_similarity("", "") == 0.0

    def test_symmetric(self):
        a, b = "ヤマダタロウ", "ヤマダハナコ"
        assert calculate_string_similarity(a, b) == calculate_string_similarity(b, a)


class TestCanonicalizeNames:
    """Test batched transliteration of kanji client names."""

    def test_no_transliterator_returns_normalized(self):
        names = asyncio.run(canonicalize_names(["ﾔﾏﾀﾞ ﾀﾛｳ", "株式会社サンプル"]))
        assert names == ["ヤマダタロウ", "株式会社サンプル"]

    def test_single_batched_call_with_dedup(self):
        fake = FakeTransliterator({
            "株式会社サンプル": "カブシキガイシャ サンプル",
            "山田太郎": "ヤマダ タロウ",
        })
        names = asyncio.run(canonicalize_names(
            ["株式会社サンプル", "タナカ ハナコ", "山田太郎", "株式会社サンプル"],
            fake,
        ))

        assert fake.calls == [["株式会社サンプル", "山田太郎"]]
        assert names == [
            "カブシキガイシャサンプル",
            "タナカハナコ",
            "ヤマダタロウ",
            "カブシキガイシャサンプル",
        ]

    def test_no_call_without_ideographs(self):
        fake = FakeTransliterator()
        names = asyncio.run(canonicalize_names(["タナカ ハナコ"], fake))
        assert fake.calls == []
        assert names == ["タナカハナコ"]

    def test_failure_falls_back_to_normalized(self):
        mc = MetricsCollector.instance()
        before = mc.get_summary()["collaborator_fallbacks"].get("transliteration", 0)

        names = asyncio.run(canonicalize_names(["株式会社サンプル"], FakeTransliterator(fail=True)))

        assert names == ["株式会社サンプル"]
        after = mc.get_summary()["collaborator_fallbacks"]["transliteration"]
        assert after == before + 1

    def test_blank_reading_keeps_original(self):
        fake = FakeTransliterator({"山田太郎": "ヤマダ タロウ"})
        names = asyncio.run(canonicalize_names(["株式会社サンプル", "山田太郎"], fake))
        assert names == ["株式会社サンプル", "ヤマダタロウ"]

    def test_short_answer_keeps_unanswered_names(self):
        class ShortTransliterator:
            async def transliterate(self, names):
                return ["カブシキガイシャ サンプル"]

        names = asyncio.run(canonicalize_names(["株式会社サンプル", "山田太郎"], ShortTransliterator()))
        assert names == ["カブシキガイシャサンプル", "山田太郎"]


class TestCanonicalizeLargePool:

    def test_large_pool_deduplicated_in_order(self):
        client_names = [f"山田商店{i % 500}" for i in range(5000)]
        fake = FakeTransliterator()

        names = asyncio.run(canonicalize_names(client_names, fake))

        assert len(fake.calls) == 1
        assert fake.calls[0] == [f"山田商店{i}" for i in range(500)]
        assert names == client_names
