"""Classification Gateway.

Every classifier in the project (player intent, campaign genre) goes through
`classify`: ask the oracle, and when it is missing, failing or unsure, fall
back to a deterministic keyword scorer over `gm.genres.KEYWORD_TABLES`.
Classification never fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gm.agents.classifier import Verdict
from gm.agents.oracle import Oracle
from gm.genres import INTENT_TABLE, SETTING_TABLE, CategoryTable, Intent, SettingCategory
from gm.settings import settings_from_env

logger = logging.getLogger(__name__)

SOURCE_ORACLE = "oracle"
SOURCE_FALLBACK = "fallback-classifier"


@dataclass(frozen=True, slots=True)
class Classification:
    label: str
    confidence: float
    reasoning: str
    source: str


def keyword_scores(text: str, table: CategoryTable) -> dict[str, float]:
    """Score every category as hits / max(words * 0.1, 1), capped at 1."""

    padded = f" {text.casefold()} "
    words = len(text.split())
    denom = max(words * 0.1, 1.0)
    scores: dict[str, float] = {}
    for category, keywords in table.keywords.items():
        hits = sum(1 for k in keywords if k in padded)
        scores[category] = min(hits / denom, 1.0)
    return scores


def keyword_classify(text: str, table: CategoryTable) -> Classification:
    scores = keyword_scores(text, table)
    best_label = table.default
    best = 0.0
    # Strictly greater: on ties the category listed first wins.
    for category, score in scores.items():
        if score > best:
            best_label, best = category, score
    if best == 0.0:
        return Classification(
            label=table.default,
            confidence=0.0,
            reasoning=f"No {table.name} keywords matched; using default",
            source=SOURCE_FALLBACK,
        )
    return Classification(
        label=best_label,
        confidence=best,
        reasoning=f"Keyword match score {best:.2f}",
        source=SOURCE_FALLBACK,
    )


def _threshold_for(table: CategoryTable) -> float:
    s = settings_from_env()
    if table is SETTING_TABLE:
        return s.setting_confidence_threshold
    return s.intent_confidence_threshold


async def classify(
    *,
    text: str,
    table: CategoryTable,
    oracle: Oracle | None,
    threshold: float | None = None,
) -> Classification:
    """Oracle-first classification with keyword fallback.

    The fallback path is taken when the oracle is absent, raises, or reports a
    confidence below `threshold`. On that path the higher-confidence result of
    oracle and keyword scorer wins, ties go to the keyword scorer, and the
    source is always reported as the fallback classifier.
    """

    limit = _threshold_for(table) if threshold is None else threshold

    verdict: Verdict | None = None
    if oracle is not None:
        try:
            verdict = await oracle.classify(table=table, text=text)
        except Exception:
            logger.warning("Oracle %s classification failed; using keyword fallback", table.name, exc_info=True)

    if verdict is not None and verdict.label in table.categories and verdict.confidence >= limit:
        return Classification(
            label=verdict.label,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
            source=SOURCE_ORACLE,
        )

    fallback = keyword_classify(text, table)
    if verdict is not None and verdict.label in table.categories and verdict.confidence > fallback.confidence:
        logger.info(
            "Low-confidence %s verdict %s (%.2f) still beats keywords (%.2f)",
            table.name,
            verdict.label,
            verdict.confidence,
            fallback.confidence,
        )
        return Classification(
            label=verdict.label,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
            source=SOURCE_FALLBACK,
        )

    logger.info("Classified %s by keywords as %s (%.2f)", table.name, fallback.label, fallback.confidence)
    return fallback


async def classify_intent(*, text: str, oracle: Oracle | None) -> Classification:
    return await classify(text=text, table=INTENT_TABLE, oracle=oracle)


async def classify_setting(*, text: str, oracle: Oracle | None) -> Classification:
    return await classify(text=text, table=SETTING_TABLE, oracle=oracle)


def is_question(c: Classification) -> bool:
    return c.label == Intent.question.value


def setting_category(c: Classification) -> SettingCategory:
    return SettingCategory(c.label)
