from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from gm.agents.base import Agent
from gm.agents.json_schema import JsonSchema
from gm.agents.structured import model_parser, request_structured
from gm.api.models import CampaignStructure, Character, GameConcept, StoryBeat
from gm.core.context import RenderedContext

MIN_BEATS = 12
MAX_BEATS = 18


class SessionPlan(BaseModel):
    beats: list[StoryBeat] = Field(..., min_length=MIN_BEATS, max_length=MAX_BEATS)

    @model_validator(mode="after")
    def _numbered(self) -> "SessionPlan":
        self.beats.sort(key=lambda b: b.beat)
        numbers = [b.beat for b in self.beats]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError(f"beats must be numbered 1..{len(numbers)}, got {numbers}")
        return self


CAMPAIGN_SCHEMA = JsonSchema.for_model("campaign_structure", CampaignStructure)
SESSION_PLAN_SCHEMA = JsonSchema.for_model("session_plan", SessionPlan)


def _party_lines(characters: list[Character]) -> list[str]:
    if not characters:
        return ["(party not created yet)"]
    return [f"- {c.name}: {c.aspect or c.archetype or c.description}" for c in characters]


async def build_campaign_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    concept: GameConcept,
    characters: list[Character],
    setting_category: str,
    max_attempts: int = 3,
) -> CampaignStructure:
    """Generate a full campaign structure.

    The parsed result goes through `CampaignStructure` validation, so a graph
    with zero or two starting nodes or a dangling lead is re-requested.
    """

    prompt = "\n".join(
        [
            "Design a campaign structure for the game below, in the style of a Fate Core 'situation web'.",
            "",
            f"Game: {concept.name}",
            f"Setting ({setting_category}): {concept.setting.strip()}",
            f"Tone: {concept.tone or 'unspecified'}",
            "Party:",
            *_party_lines(characters),
            "",
            "Requirements:",
            "- exactly 2 campaign_issues and 3-5 campaign_aspects;",
            "- 2-3 factions, each with a clock (value 0, max 4), an objective and 4 steps;",
            "- 5-7 nodes; exactly ONE has is_starting_node=true;",
            "- every node has 2-3 leads, and every lead is the exact title of ANOTHER node;",
            "- each node has stakes, challenges, 1-2 faces and 2 aspects; secrets are optional;",
            "- a resolution with primary_objective, hidden_truth, 2-3 victory_conditions (achieved=false)",
            "  and convergence_triggers (triggered=false).",
            "",
            "Return ONLY JSON matching the required schema.",
        ]
    )
    return await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=prompt,
        schema=CAMPAIGN_SCHEMA,
        parse=model_parser(CampaignStructure),
        what="campaign structure",
        max_attempts=max_attempts,
    )


async def plan_session_beats_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    session_number: int,
    max_attempts: int = 3,
) -> list[StoryBeat]:
    prompt = "\n".join(
        [
            f"Plan game session #{session_number} as a sequence of {MIN_BEATS}-{MAX_BEATS} flexible story beats",
            "for a 1-3 hour session that can end gracefully at several points.",
            "",
            "- The first beat picks up directly from the current scene and recent events.",
            "- Follow what the players focused on; show consequences of what they ignored.",
            "- Beats 6, 9, 12 and 15 are satisfying stopping points (is_potential_session_break=true).",
            "- Mark 3-5 beats is_flexible=true (optional side scenes).",
            "- Urgent pacing (confrontation, revelation) if clocks are high; exploration early on.",
            "- beat_type is one of exploration, investigation, confrontation, revelation, crisis.",
            "- intensity is 1-5; number beats 1, 2, 3, ...",
            "",
            "Return ONLY JSON matching the required schema.",
        ]
    )
    plan = await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=prompt,
        schema=SESSION_PLAN_SCHEMA,
        parse=model_parser(SessionPlan),
        what="session plan",
        max_attempts=max_attempts,
    )
    return plan.beats
