from __future__ import annotations

from gm.agents.base import Agent
from gm.agents.json_schema import JsonSchema
from gm.agents.structured import model_parser, request_structured, request_text
from gm.api.models import ActionResolution, CampaignStructure, MechanicsVisibility, RulesAdapter, WorldState
from gm.core.context import RenderedContext

RESOLUTION_SCHEMA = JsonSchema.for_model("resolve_action", ActionResolution)


def _reference_ids(*, world: WorldState, campaign: CampaignStructure | None) -> list[str]:
    """Identifiers the world update is allowed to mention."""

    lines: list[str] = []
    if campaign is not None:
        lines.append(f"- scene_change.node_id must be one of: {[n.id for n in campaign.nodes]}")
        secret_ids = [s.id for n in campaign.nodes for s in n.secrets]
        if secret_ids:
            lines.append(f"- revealed_secrets may contain: {secret_ids}")
    if world.factions:
        lines.append(f"- faction names (discovered_factions, faction_advances): {[f.name for f in world.factions]}")
    if world.resolution is not None:
        open_ids = [vc.id for vc in world.resolution.victory_conditions if not vc.achieved]
        if open_ids:
            lines.append(f"- achieved_conditions may contain: {open_ids}")
        pending = [t.condition for t in world.resolution.convergence_triggers if not t.triggered]
        if pending:
            lines.append(f"- triggered_convergence may contain (verbatim): {pending}")
    return lines


def _mechanics_instruction(*, visibility: MechanicsVisibility, rules: RulesAdapter) -> str:
    if visibility == MechanicsVisibility.hidden:
        return f"Resolve using {rules.value} rules, but set mechanics_details to null; never mention dice or numbers."
    if visibility == MechanicsVisibility.minimal:
        return f"Resolve using {rules.value} rules; put a one-line outcome (e.g. 'Success with style') in mechanics_details."
    return f"Resolve using {rules.value} rules; put the full roll breakdown in mechanics_details."


async def acknowledge_with_agent(*, agent: Agent, ctx: RenderedContext, action: str) -> str:
    prompt = "\n".join(
        [
            "The acting character attempts the action below.",
            "Reply with ONE short sentence (max 20 words) acknowledging the attempt as it begins.",
            "Do not reveal the outcome.",
            "",
            "Action:",
            action.strip(),
        ]
    )
    return await request_text(agent=agent, ctx=ctx, prompt=prompt, what="acknowledgement")


async def resolve_action_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    action: str,
    world: WorldState,
    campaign: CampaignStructure | None,
    rules: RulesAdapter,
    visibility: MechanicsVisibility,
    max_attempts: int = 3,
) -> ActionResolution:
    """Resolve an action into narration plus a structured world update."""

    prompt = "\n".join(
        [
            "Resolve the acting character's action as the game master.",
            _mechanics_instruction(visibility=visibility, rules=rules),
            "",
            "Write narrative_result as 1-3 vivid paragraphs in second person.",
            "Fill world_update with what changed: a refreshed summary if the situation shifted,",
            "one new_event line for the event log, threads opened or resolved, places discovered,",
            "a scene_change only if the party moves to another situation, faction clock ticks for",
            "factions that made progress off-screen, and beat_completed if this closed a story beat.",
            "Only reference these identifiers:",
            *_reference_ids(world=world, campaign=campaign),
            "",
            "Return ONLY JSON matching the required schema.",
            "",
            "Action:",
            action.strip(),
        ]
    )
    return await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=prompt,
        schema=RESOLUTION_SCHEMA,
        parse=model_parser(ActionResolution),
        what="action resolution",
        max_attempts=max_attempts,
    )


async def answer_question_with_agent(*, agent: Agent, ctx: RenderedContext, question: str) -> str:
    prompt = "\n".join(
        [
            "A player asks the game master a question out of character.",
            "Answer from what the acting character could know or perceive. Never reveal hidden agendas,",
            "unrevealed secrets or the hidden truth. Keep it under 120 words. Do not advance the story.",
            "",
            "Question:",
            question.strip(),
        ]
    )
    return await request_text(agent=agent, ctx=ctx, prompt=prompt, what="answer")


async def recap_with_agent(*, agent: Agent, ctx: RenderedContext, session_number: int) -> str:
    prompt = "\n".join(
        [
            f"Session {session_number} is about to begin.",
            "Write a 'Previously on...' recap of one short paragraph from the recent events and open threads.",
            "Mention only what the players already know.",
        ]
    )
    return await request_text(agent=agent, ctx=ctx, prompt=prompt, what="recap")
