from __future__ import annotations

import pytest

from gm.agents.classifier import Verdict
from gm.classification import (
    SOURCE_FALLBACK,
    SOURCE_ORACLE,
    classify,
    classify_intent,
    classify_setting,
    is_question,
    keyword_classify,
    keyword_scores,
    setting_category,
)
from gm.genres import INTENT_TABLE, KEYWORD_TABLES, SETTING_TABLE, Intent, SettingCategory


def test_keyword_question() -> None:
    c = keyword_classify("What is behind the door?", INTENT_TABLE)
    assert c.label == Intent.question.value
    assert c.confidence == 1.0
    assert c.source == SOURCE_FALLBACK


def test_keyword_action() -> None:
    c = keyword_classify("I draw my sword and charge the goblin", INTENT_TABLE)
    assert c.label == Intent.action.value
    assert c.confidence == 1.0


def test_keyword_tie_goes_to_first_listed_category() -> None:
    scores = keyword_scores("I wonder what", INTENT_TABLE)
    assert scores[Intent.action.value] == scores[Intent.question.value]
    assert keyword_classify("I wonder what", INTENT_TABLE).label == Intent.action.value


def test_keyword_no_hits_returns_default_with_zero_confidence() -> None:
    c = keyword_classify("Hello there", INTENT_TABLE)
    assert c.label == INTENT_TABLE.default
    assert c.confidence == 0.0

    s = keyword_classify("zzz", SETTING_TABLE)
    assert s.label == SettingCategory.generic.value
    assert s.confidence == 0.0


def test_keyword_score_scales_with_length() -> None:
    # 20 words, one hit: 1 / (20 * 0.1)
    text = "i " + "walk " * 19
    assert keyword_scores(text, INTENT_TABLE)[Intent.action.value] == pytest.approx(0.5)


def test_keyword_tables_are_registered() -> None:
    assert KEYWORD_TABLES["intent"] is INTENT_TABLE
    assert KEYWORD_TABLES["setting"] is SETTING_TABLE
    assert set(SETTING_TABLE.categories) == {c.value for c in SettingCategory}


@pytest.mark.asyncio
async def test_confident_oracle_wins(oracle) -> None:
    oracle.intent = Verdict(label=Intent.question.value, confidence=0.9, reasoning="asks")
    c = await classify_intent(text="I draw my sword", oracle=oracle)

    assert c.label == Intent.question.value
    assert c.source == SOURCE_ORACLE
    assert c.reasoning == "asks"
    assert is_question(c)


@pytest.mark.asyncio
async def test_zero_confidence_oracle_equals_keyword_result(oracle) -> None:
    oracle.intent = Verdict(label=Intent.question.value, confidence=0.0)
    text = "I draw my sword and charge the goblin"

    got = await classify_intent(text=text, oracle=oracle)
    assert got == keyword_classify(text, INTENT_TABLE)


@pytest.mark.asyncio
async def test_low_confidence_oracle_beats_weaker_keywords(oracle) -> None:
    oracle.intent = Verdict(label=Intent.question.value, confidence=0.5, reasoning="maybe")
    c = await classify_intent(text="Hello there", oracle=oracle)

    assert c.label == Intent.question.value
    assert c.confidence == 0.5
    assert c.source == SOURCE_FALLBACK


@pytest.mark.asyncio
async def test_tie_between_oracle_and_keywords_goes_to_keywords(oracle) -> None:
    oracle.intent = Verdict(label=Intent.question.value, confidence=0.5)
    c = await classify_intent(text="i " + "walk " * 19, oracle=oracle)

    assert c.label == Intent.action.value
    assert c.confidence == pytest.approx(0.5)
    assert c.source == SOURCE_FALLBACK


@pytest.mark.asyncio
async def test_oracle_error_falls_back(oracle) -> None:
    oracle.classify_error = RuntimeError("boom")
    c = await classify_intent(text="Where is the lighthouse?", oracle=oracle)

    assert c.label == Intent.question.value
    assert c.source == SOURCE_FALLBACK


@pytest.mark.asyncio
async def test_missing_oracle_uses_keywords() -> None:
    c = await classify_setting(text="A gothic vampire mansion", oracle=None)
    assert setting_category(c) == SettingCategory.horror_gothic
    assert c.source == SOURCE_FALLBACK


@pytest.mark.asyncio
async def test_oracle_label_outside_table_is_ignored(oracle) -> None:
    oracle.setting = Verdict(label="space_opera", confidence=0.99)
    c = await classify_setting(text="A gothic vampire mansion", oracle=oracle)
    assert c.label == SettingCategory.horror_gothic.value
    assert c.source == SOURCE_FALLBACK


@pytest.mark.asyncio
async def test_threshold_from_environment(oracle, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GM_INTENT_CONFIDENCE_THRESHOLD", "0.99")
    c = await classify_intent(text="Hello there", oracle=oracle)
    # 0.95 is below the raised threshold but still beats zero keyword hits.
    assert c.label == Intent.action.value
    assert c.source == SOURCE_FALLBACK


@pytest.mark.asyncio
async def test_explicit_threshold_overrides_settings(oracle) -> None:
    oracle.intent = Verdict(label=Intent.question.value, confidence=0.3)
    c = await classify(text="Hello there", table=INTENT_TABLE, oracle=oracle, threshold=0.2)
    assert c.source == SOURCE_ORACLE
