from __future__ import annotations

from pydantic import BaseModel, Field

from gm.agents.base import Agent
from gm.agents.json_schema import JsonSchema
from gm.agents.structured import model_parser, request_structured
from gm.api.models import ConceptField, GameConcept
from gm.core.context import RenderedContext


class ConceptDraft(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    setting: str = Field(..., min_length=1)
    tone: str = Field(..., min_length=1)


class FieldDraft(BaseModel):
    value: str = Field(..., min_length=1)


CONCEPT_SCHEMA = JsonSchema.for_model("game_concept", ConceptDraft)
FIELD_SCHEMA = JsonSchema.for_model("concept_field", FieldDraft)

_FIELD_GUIDANCE: dict[ConceptField, str] = {
    ConceptField.setting: "Two or three sentences on where and when the game takes place and what makes it distinctive.",
    ConceptField.tone: "A short phrase naming the mood and genre feel (e.g. 'grim, claustrophobic horror').",
}


async def generate_concept_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    request: str,
    max_attempts: int = 3,
) -> ConceptDraft:
    prompt = "\n".join(
        [
            "Turn the player's request below into a tabletop game concept.",
            "",
            "Request:",
            request.strip(),
            "",
            "- name: an evocative title of at most six words;",
            f"- setting: {_FIELD_GUIDANCE[ConceptField.setting]}",
            f"- tone: {_FIELD_GUIDANCE[ConceptField.tone]}",
            "",
            "Return ONLY JSON matching the required schema.",
        ]
    )
    draft = await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=prompt,
        schema=CONCEPT_SCHEMA,
        parse=model_parser(ConceptDraft),
        what="game concept",
        max_attempts=max_attempts,
    )
    return ConceptDraft(name=draft.name.strip(), setting=draft.setting.strip(), tone=draft.tone.strip())


async def regenerate_field_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    concept: GameConcept,
    field: ConceptField,
    max_attempts: int = 3,
) -> str:
    """Write a fresh value for one concept field, keeping the rest of the concept fixed."""

    current = getattr(concept, field.value)
    prompt = "\n".join(
        [
            f"Rewrite the {field.value} of the game below. Offer something noticeably different from the current one",
            "while still honouring the original request.",
            "",
            f"Game: {concept.name}",
            f"Original request: {concept.original_request or '(none)'}",
            f"Setting: {concept.setting}",
            f"Tone: {concept.tone or 'unspecified'}",
            f"Current {field.value}: {current or '(empty)'}",
            "",
            _FIELD_GUIDANCE[field],
            "",
            "Return ONLY JSON matching the required schema.",
        ]
    )
    draft = await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=prompt,
        schema=FIELD_SCHEMA,
        parse=model_parser(FieldDraft),
        what=f"concept {field.value}",
        max_attempts=max_attempts,
    )
    return draft.value.strip()
