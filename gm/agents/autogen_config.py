"""LLM settings per oracle role.

Every role shares the OpenAI-compatible endpoint (`OPENAI_BASE_URL` /
`OPENAI_API_KEY`) but may pin its own model and temperature:

    GM_<ROLE>_MODEL        falls back to OPENAI_MODEL, then DEFAULT_MODEL
    GM_<ROLE>_TEMPERATURE  falls back to the role default, then OPENAI_TEMPERATURE

Roles: `narrator`, `classifier`, `campaign_designer`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from autogen import LLMConfig

DEFAULT_MODEL = "gpt-4o-mini"


class OracleRole(StrEnum):
    narrator = "narrator"
    classifier = "classifier"
    campaign_designer = "campaign_designer"


# Labels and verdicts should not drift between identical calls.
_ROLE_TEMPERATURE: dict[OracleRole, float] = {OracleRole.classifier: 0.0}


@dataclass(frozen=True, slots=True)
class RoleLlmSettings:
    role: OracleRole
    model: str
    base_url: str | None
    api_key: str | None
    temperature: float | None

    def llm_config(self) -> LLMConfig:
        # Local OpenAI-compatible servers ignore the key but the client insists on one.
        api_key = self.api_key or ("ollama" if self.base_url else None)
        if not api_key:
            raise RuntimeError(
                "Set OPENAI_API_KEY for hosted OpenAI, or set OPENAI_BASE_URL for a local OpenAI-compatible server"
            )

        entry: dict[str, Any] = {"model": self.model, "api_key": api_key}
        if self.base_url:
            entry["base_url"] = self.base_url
        if self.temperature is None:
            return LLMConfig(config_list=[entry])
        return LLMConfig(config_list=[entry], temperature=self.temperature)


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name)
    return float(raw) if raw else None


def role_settings_from_env(role: OracleRole | str) -> RoleLlmSettings:
    role = OracleRole(role)
    prefix = f"GM_{role.value.upper()}"

    temperature = _env_float(f"{prefix}_TEMPERATURE")
    if temperature is None:
        temperature = _ROLE_TEMPERATURE.get(role, _env_float("OPENAI_TEMPERATURE"))

    return RoleLlmSettings(
        role=role,
        model=os.environ.get(f"{prefix}_MODEL") or os.environ.get("OPENAI_MODEL", DEFAULT_MODEL),
        # For Ollama, typically http://127.0.0.1:11434/v1
        base_url=os.environ.get("OPENAI_BASE_URL"),
        api_key=os.environ.get("OPENAI_API_KEY"),
        temperature=temperature,
    )
