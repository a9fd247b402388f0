from __future__ import annotations

from dataclasses import dataclass

from gm.agents.base import Agent
from gm.agents.json_schema import JsonSchema
from gm.agents.structured import OracleError, parse_json_object, request_structured
from gm.core.context import RenderedContext
from gm.genres import CategoryTable


@dataclass(frozen=True, slots=True)
class Verdict:
    label: str
    confidence: float
    reasoning: str = ""


def classification_schema(table: CategoryTable) -> JsonSchema:
    return JsonSchema(
        name=f"classify_{table.name}",
        schema={
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "label": {"type": "string", "enum": list(table.categories)},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "reasoning": {"type": "string"},
            },
            "required": ["label", "confidence", "reasoning"],
        },
        strict=True,
    )


def parse_verdict(text: str, *, table: CategoryTable) -> Verdict:
    """Parse strict JSON output for a classification.

    Expected: {"label": "<category>", "confidence": 0.0-1.0, "reasoning": "..."}.
    Labels are matched case-insensitively against the table's categories.
    """

    data = parse_json_object(text)

    label = data.get("label")
    if label is None:
        label = data.get("category")
    if not isinstance(label, str) or not label.strip():
        raise OracleError("Missing/invalid 'label' field")
    canonical = {c.casefold(): c for c in table.categories}
    picked = canonical.get(label.strip().casefold())
    if picked is None:
        raise OracleError(f"Label {label!r} is not one of {list(table.categories)}")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise OracleError("Missing/invalid 'confidence' field")

    reasoning = data.get("reasoning")
    return Verdict(
        label=picked,
        confidence=max(0.0, min(1.0, float(confidence))),
        reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
    )


def _prompt(*, table: CategoryTable, text: str, descriptions: str) -> str:
    lines = [
        f"Classify the following input into exactly ONE {table.name} category.",
        "",
        f"Allowed categories: {list(table.categories)}",
    ]
    if descriptions.strip():
        lines += ["", "Category descriptions:", descriptions.strip()]
    lines += [
        "",
        "Report how confident you are as a number between 0 and 1.",
        "Return ONLY JSON matching the required schema. No explanation outside the JSON.",
        "",
        "Input:",
        text.strip(),
    ]
    return "\n".join(lines)


async def classify_with_agent(
    *,
    agent: Agent,
    ctx: RenderedContext,
    table: CategoryTable,
    text: str,
    descriptions: str = "",
    max_attempts: int = 2,
) -> Verdict:
    return await request_structured(
        agent=agent,
        ctx=ctx,
        prompt=_prompt(table=table, text=text, descriptions=descriptions),
        schema=classification_schema(table),
        parse=lambda raw: parse_verdict(raw, table=table),
        what=f"{table.name} classification",
        max_attempts=max_attempts,
    )
