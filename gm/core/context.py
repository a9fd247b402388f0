from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class BaseAgentContext:
    """Global, shared instructions for every oracle call."""

    system_prompt: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Per-session context: game concept plus the rendered world state."""

    game_name: str
    setting: str
    tone: str = ""
    rules_adapter: str = ""
    mechanics_visibility: str = ""
    world_text: str = ""


@dataclass(frozen=True, slots=True)
class CharacterContext:
    """The character the current input is attributed to."""

    character_id: str
    name: str
    description: str = ""
    aspect: str = ""
    skills: str = ""


@dataclass(frozen=True, slots=True)
class RenderedContext:
    """Final, merged context passed into the LLM agent."""

    system_prompt: str

    def as_messages(self) -> list[dict[str, str]]:
        return [{"role": "system", "content": self.system_prompt}]


def compose_context(
    *,
    base: BaseAgentContext,
    session: SessionContext | None = None,
    character: CharacterContext | None = None,
) -> RenderedContext:
    parts: list[str] = [base.system_prompt.strip()]

    if session is not None:
        lines = [
            "GAME CONTEXT:",
            f"- game: {session.game_name}",
            f"- setting: {session.setting.strip()}",
        ]
        if session.tone:
            lines.append(f"- tone: {session.tone}")
        if session.rules_adapter:
            lines.append(f"- rules: {session.rules_adapter}")
        if session.mechanics_visibility:
            lines.append(f"- mechanics visibility: {session.mechanics_visibility}")
        parts.append("\n".join(lines).strip())
        if session.world_text.strip():
            parts.append("WORLD STATE:\n" + session.world_text.strip())

    if character is not None:
        lines = [
            "ACTING CHARACTER:",
            f"- character_id: {character.character_id}",
            f"- name: {character.name}",
        ]
        if character.aspect:
            lines.append(f"- aspect: {character.aspect}")
        if character.skills:
            lines.append(f"- skills: {character.skills}")
        if character.description.strip():
            lines.append("- description:")
            lines.append(character.description.strip())
        parts.append("\n".join(lines).strip())

    system_prompt = "\n\n".join([p for p in parts if p.strip()]).strip()
    return RenderedContext(system_prompt=system_prompt)
