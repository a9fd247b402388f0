from __future__ import annotations

from typing import cast

from gm.agents.ag2_backend import Ag2ChatAgent
from gm.agents.autogen_config import OracleRole
from gm.agents.base import Agent


def create_role_agent(role: OracleRole | str) -> Agent:
    return cast(Agent, Ag2ChatAgent.for_role(role))
