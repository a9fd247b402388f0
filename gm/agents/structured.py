from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from gm.agents.base import Agent
from gm.agents.json_schema import JsonSchema
from gm.core.context import RenderedContext

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class OracleError(RuntimeError):
    pass


def parse_json_object(text: str) -> dict[str, Any]:
    """Strict JSON object parsing.

    Some models wrap their answer in a ```json fence even in structured mode;
    that fence is stripped, anything else that is not a JSON object is rejected.
    """

    body = text.strip()
    if body.startswith("```"):
        body = body.strip("`")
        if body.startswith("json"):
            body = body[len("json"):]
        body = body.strip()

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise OracleError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise OracleError("Expected a JSON object")
    return data


def model_parser(model: type[M]) -> Callable[[str], M]:
    def parse(text: str) -> M:
        data = parse_json_object(text)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise OracleError(f"Output does not match {model.__name__}: {e.error_count()} error(s)") from e

    return parse


async def request_structured(
    *,
    agent: Agent,
    ctx: RenderedContext,
    prompt: str,
    schema: JsonSchema,
    parse: Callable[[str], T],
    what: str,
    max_attempts: int = 3,
) -> T:
    """Ask `agent` for structured output, re-asking on unparsable replies.

    `parse` raises on anything it does not accept (bad JSON, values outside an
    allowed set); after `max_attempts` the last error is surfaced as OracleError.
    """

    last_err: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        action = await agent.propose_action(prompt=prompt, ctx=ctx, structured_output=schema)

        try:
            return parse(action.content)
        except (OracleError, ValueError) as e:
            logger.info("Oracle %s attempt %d/%d rejected: %s", what, attempt, max_attempts, e)
            last_err = e
            continue

    raise OracleError(f"Failed to get a valid {what} after {max_attempts} attempts: {last_err}")


async def request_text(*, agent: Agent, ctx: RenderedContext, prompt: str, what: str) -> str:
    action = await agent.propose_action(prompt=prompt, ctx=ctx)
    text = action.content.strip()
    if not text:
        raise OracleError(f"Empty {what}")
    return text
