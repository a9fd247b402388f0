from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class GameMasterSettings:
    # Classifier confidence below which the keyword fallback is consulted.
    intent_confidence_threshold: float = 0.6
    setting_confidence_threshold: float = 0.6

    default_idle_timeout_minutes: int = 120
    # The idle warning fires this many minutes before the timeout.
    idle_warning_lead_minutes: int = 30

    # Optimistic transaction retries on WATCH collisions.
    txn_max_retries: int = 20

    # Approximate cap on per-session event streams.
    event_stream_maxlen: int = 500

    idle_scan_seconds: float = 60.0


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def settings_from_env() -> GameMasterSettings:
    d = GameMasterSettings()
    return GameMasterSettings(
        intent_confidence_threshold=_float("GM_INTENT_CONFIDENCE_THRESHOLD", d.intent_confidence_threshold),
        setting_confidence_threshold=_float("GM_SETTING_CONFIDENCE_THRESHOLD", d.setting_confidence_threshold),
        default_idle_timeout_minutes=_int("GM_DEFAULT_IDLE_TIMEOUT_MINUTES", d.default_idle_timeout_minutes),
        idle_warning_lead_minutes=_int("GM_IDLE_WARNING_LEAD_MINUTES", d.idle_warning_lead_minutes),
        txn_max_retries=_int("GM_TXN_MAX_RETRIES", d.txn_max_retries),
        event_stream_maxlen=_int("GM_EVENT_STREAM_MAXLEN", d.event_stream_maxlen),
        idle_scan_seconds=_float("GM_IDLE_SCAN_SECONDS", d.idle_scan_seconds),
    )
