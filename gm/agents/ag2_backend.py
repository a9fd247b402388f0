from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from autogen import ConversableAgent

from gm.agents.autogen_config import OracleRole, RoleLlmSettings, role_settings_from_env
from gm.agents.base import AgentAction
from gm.agents.json_schema import JsonSchema
from gm.core.context import RenderedContext

logger = logging.getLogger(__name__)


def _last_reply(messages: object) -> str:
    if not isinstance(messages, list):
        return ""

    for msg in reversed(messages):
        if isinstance(msg, dict) and msg.get("role") != "user":
            content = msg.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return ""


@dataclass(slots=True)
class Ag2ChatAgent:
    """One oracle role backed by a single-turn AG2 `ConversableAgent`.

    The system prompt is the rendered game-master context for this call;
    model and temperature come from the role's settings. A fresh AG2 agent is
    built per call so concurrent sessions never share chat history.
    """

    name: str
    settings: RoleLlmSettings

    @classmethod
    def for_role(cls, role: OracleRole | str) -> Ag2ChatAgent:
        settings = role_settings_from_env(role)
        return cls(name=f"gm-{settings.role.value}", settings=settings)

    def _run_blocking(self, *, prompt: str, ctx: RenderedContext, structured_output: JsonSchema | None) -> AgentAction:
        agent = ConversableAgent(
            name=self.name,
            system_message=ctx.system_prompt,
            llm_config=self.settings.llm_config(),
            human_input_mode="NEVER",
        )

        # Passed through to the OpenAI client as the structured-output contract.
        extra: dict[str, Any] = {}
        if structured_output is not None:
            extra["response_format"] = structured_output.as_response_format()

        result = agent.run(message=prompt, max_turns=1, **extra)
        result.process()

        text = _last_reply(list(result.messages))
        if not text and isinstance(result.summary, str):
            text = result.summary.strip()

        metadata: dict[str, Any] = {
            "role": self.settings.role.value,
            "model": self.settings.model,
            "schema": structured_output.name if structured_output is not None else None,
        }
        usage = agent.get_total_usage()
        if usage:
            metadata["usage"] = usage
            logger.debug("Oracle %s (%s) usage: %s", self.settings.role.value, self.settings.model, usage)
        return AgentAction(kind="chat", content=text, metadata=metadata)

    async def propose_action(
        self,
        *,
        prompt: str,
        ctx: RenderedContext,
        structured_output: JsonSchema | None = None,
    ) -> AgentAction:
        # AG2's run loop blocks; keep the event loop free for other sessions.
        return await asyncio.to_thread(
            self._run_blocking, prompt=prompt, ctx=ctx, structured_output=structured_output
        )
