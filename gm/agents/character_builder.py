from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from gm.agents.base import Agent
from gm.agents.json_schema import JsonSchema
from gm.agents.structured import model_parser, request_structured
from gm.api.models import Character, CharacterPreferences, CharacterStats, GameConcept, Skill
from gm.core.context import RenderedContext

# Fate Core starting pyramid: one Great, two Good, three Fair.
SKILL_PYRAMID = [3, 2, 2, 1, 1, 1]
STUNT_COUNT = 2


class CharacterDraft(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    aspect: str = Field(..., min_length=1)
    pronouns: str = ""
    age: str = ""
    archetype: str = ""
    skills: list[Skill] = Field(..., min_length=len(SKILL_PYRAMID), max_length=len(SKILL_PYRAMID))
    stunts: list[str] = Field(..., min_length=STUNT_COUNT, max_length=STUNT_COUNT)

    @field_validator("skills")
    @classmethod
    def _pyramid(cls, skills: list[Skill]) -> list[Skill]:
        ranks = sorted((s.rank for s in skills), reverse=True)
        if ranks != SKILL_PYRAMID:
            raise ValueError(f"skill ranks must form the pyramid {SKILL_PYRAMID}, got {ranks}")
        if len({s.name.strip().lower() for s in skills}) != len(skills):
            raise ValueError("skill names must be distinct")
        return sorted(skills, key=lambda s: s.rank, reverse=True)

    def to_character(self, *, player_name: str = "") -> Character:
        return Character(
            id="",
            name=self.name.strip(),
            description=self.description.strip(),
            aspect=self.aspect.strip(),
            pronouns=self.pronouns.strip(),
            age=self.age.strip(),
            archetype=self.archetype.strip(),
            player_name=player_name,
            stats=CharacterStats(skills=self.skills, stunts=[s.strip() for s in self.stunts]),
        )


CHARACTER_SCHEMA = JsonSchema.for_model("character_draft", CharacterDraft)


def _preference_lines(preferences: CharacterPreferences) -> list[str]:
    wanted = [
        ("Name (use exactly)", preferences.name),
        ("Player's vision", preferences.vision),
        ("Pronouns", preferences.pronouns),
        ("Age", preferences.age),
        ("Archetype", preferences.archetype),
    ]
    lines = [f"- {label}: {value.strip()}" for label, value in wanted if value.strip()]
    return lines or ["- none; surprise the player"]


async def generate_character_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    concept: GameConcept,
    existing: list[Character],
    preferences: CharacterPreferences,
    max_attempts: int = 3,
) -> Character:
    """Create one player character that fits the game and stands apart from the party."""

    party = [f"- {c.name}: {c.archetype or c.aspect or c.description}" for c in existing]
    prompt = "\n".join(
        [
            "Create a player character for the game below.",
            "",
            f"Game: {concept.name}",
            f"Setting: {concept.setting.strip()}",
            f"Tone: {concept.tone or 'unspecified'}",
            "Existing party (the new character must not resemble any of them):",
            *(party or ["(none yet)"]),
            "",
            "Player preferences:",
            *_preference_lines(preferences),
            "",
            "Requirements:",
            "- description is ONE sentence;",
            "- aspect is a short evocative high concept;",
            f"- exactly {len(SKILL_PYRAMID)} distinct skills ranked {SKILL_PYRAMID} (Fate Core pyramid);",
            f"- exactly {STUNT_COUNT} stunts, each one sentence.",
            "",
            "Return ONLY JSON matching the required schema.",
        ]
    )
    draft = await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=prompt,
        schema=CHARACTER_SCHEMA,
        parse=model_parser(CharacterDraft),
        what="character",
        max_attempts=max_attempts,
    )
    character = draft.to_character(player_name=preferences.player_name.strip())
    if preferences.name.strip():
        character.name = preferences.name.strip()
    return character
