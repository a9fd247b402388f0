"""Consequence Gate.

Advisory and stateless: each attempt is re-evaluated, nothing is stored. There
is no deterministic fallback, so an oracle failure surfaces as
`OracleUnavailable` and the player may simply retry.
"""

from __future__ import annotations

import logging

from gm.agents.oracle import Oracle
from gm.api.models import ConsequenceAssessment
from gm.errors import OracleUnavailable
from gm.turn_processing.scene_context import SceneContext

logger = logging.getLogger(__name__)


async def assess(*, oracle: Oracle, scene: SceneContext, action: str) -> ConsequenceAssessment:
    try:
        result = await oracle.assess_consequences(scene=scene, action=action)
    except Exception as e:
        logger.warning("Consequence assessment failed for session %s", scene.session.session_id, exc_info=True)
        raise OracleUnavailable("Could not assess the consequences of that action; please try again") from e

    if result.needs_confirmation:
        logger.info(
            "Action in session %s needs confirmation: %s",
            scene.session.session_id,
            result.confirmation_message,
        )
    return result
