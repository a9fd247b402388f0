from __future__ import annotations

from gm.agents.base import Agent
from gm.agents.json_schema import JsonSchema
from gm.agents.structured import OracleError, parse_json_object, request_structured
from gm.api.models import ConsequenceAssessment
from gm.core.context import RenderedContext

CONSEQUENCE_SCHEMA = JsonSchema(
    name="assess_consequences",
    schema={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "needs_confirmation": {"type": "boolean"},
            "confirmation_message": {
                "type": "string",
                "description": "Question put to the player when confirmation is needed; empty otherwise.",
            },
        },
        "required": ["needs_confirmation", "confirmation_message"],
    },
    strict=True,
)


def parse_assessment(text: str) -> ConsequenceAssessment:
    data = parse_json_object(text)

    needs = data.get("needs_confirmation")
    if not isinstance(needs, bool):
        raise OracleError("Missing/invalid 'needs_confirmation' field")

    message = data.get("confirmation_message")
    if not isinstance(message, str) or not message.strip():
        message = None
    if needs and message is None:
        message = "This action may have serious consequences. Are you sure?"

    return ConsequenceAssessment(needs_confirmation=needs, confirmation_message=message.strip() if message else None)


def _prompt(action: str) -> str:
    return "\n".join(
        [
            "A player proposes the action below. Decide whether it needs explicit confirmation before it happens.",
            "",
            "Ask for confirmation when the action is:",
            "- irreversible (killing, destroying something unique, burning bridges with a faction),",
            "- morally significant (betrayal, atrocity, abandoning an ally),",
            "- world-altering (would end or redirect the campaign's main conflict),",
            "- a major detour that abandons the current situation entirely.",
            "Routine actions do NOT need confirmation even when they are risky: fighting, sneaking, persuading,",
            "exploring, asking NPCs questions.",
            "",
            "When confirmation is needed, write one short sentence that tells the player what is at stake.",
            "Return ONLY JSON matching the required schema.",
            "",
            "Proposed action:",
            action.strip(),
        ]
    )


async def assess_consequences_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    action: str,
    max_attempts: int = 2,
) -> ConsequenceAssessment:
    return await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=_prompt(action),
        schema=CONSEQUENCE_SCHEMA,
        parse=parse_assessment,
        what="consequence assessment",
        max_attempts=max_attempts,
    )
