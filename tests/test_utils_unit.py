from __future__ import annotations

import logging

import pytest

from utils.logging import configure_logging
from utils.performance import StageTimer
from utils.text_normalization import normalize_text, significant_words, tokenize


def test_normalize_text_strips_punctuation_and_case():
    assert normalize_text("Total:  $1,200.00") == "total 1 200 00"
    assert normalize_text("  Multiple   Spaces  ") == "multiple spaces"
    assert normalize_text("snake_case-name") == "snake case name"
    assert normalize_text("") == ""


def test_normalize_text_composes_unicode():
    decomposed = "Cafe\u0301"
    assert normalize_text(decomposed) == normalize_text("Caf\u00e9")


def test_tokenize_and_significant_words():
    assert tokenize("The quick, brown fox!") == ["the", "quick", "brown", "fox"]
    assert tokenize("   ") == []
    words = significant_words("The report and the revenue of it")
    assert words == frozenset({"report", "revenue"})


# =============================================================================
# Stage timing
# =============================================================================

def test_stage_timer_records_stages():
    timer = StageTimer()
    with timer.track("matching", pages=3) as timing:
        pass
    assert [t.name for t in timer.timings] == ["matching"]
    assert timing.metadata == {"pages": 3}
    assert timing.duration >= 0.0


def test_stage_timer_totals_per_stage():
    timer = StageTimer()
    for name in ("fingerprint", "matching", "fingerprint"):
        with timer.track(name):
            pass
    totals = timer.totals()
    assert list(totals) == ["fingerprint", "matching"]
    assert timer.total == pytest.approx(sum(totals.values()))
    timer.log_summary(page_count=4)


def test_stage_timer_records_even_on_error():
    timer = StageTimer()
    with pytest.raises(RuntimeError):
        with timer.track("broken"):
            raise RuntimeError("boom")
    assert timer.timings[0].name == "broken"


def test_empty_timer_summary():
    timer = StageTimer()
    assert timer.totals() == {}
    timer.log_summary()


# =============================================================================
# Logging
# =============================================================================

def test_configure_logging_accepts_level_names():
    configure_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("PIL").level == logging.WARNING
    configure_logging(logging.INFO)
    assert logging.getLogger().level == logging.INFO


def test_configure_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        configure_logging("chatty")
