from __future__ import annotations

from gm.core.context import BaseAgentContext
from gm.prompts import load_prompt


def _base(name: str, *, system_prefix: str = "") -> BaseAgentContext:
    parts: list[str] = []
    if system_prefix.strip():
        parts.append(system_prefix.strip())
    parts.append(load_prompt(name).strip())
    return BaseAgentContext(system_prompt="\n\n".join(parts).strip(), metadata={"prompt": name})


def make_game_master_context(*, system_prefix: str = "") -> BaseAgentContext:
    """Shared context for narration, answers, consequence checks and planning.

    Built from prompts/game_master.txt; `system_prefix` prepends extra
    system-level instructions.
    """

    return _base("game_master.txt", system_prefix=system_prefix)


def make_classifier_context() -> BaseAgentContext:
    return _base("classifier.txt")


def make_campaign_designer_context() -> BaseAgentContext:
    return _base("campaign_designer.txt")


def make_character_designer_context() -> BaseAgentContext:
    return _base("character_designer.txt")
