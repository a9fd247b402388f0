"""Background worker: campaign builds and idle detection.

Build requests are appended to the `gm:jobs` stream and consumed through a
consumer group, so several worker processes can share the load and each job
is delivered to one of them. Run with `python -m gm.worker`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from dataclasses import dataclass
from uuid import UUID

import redis

from gm.agents.oracle import AgentOracle, Oracle
from gm.api.models import CampaignStructure, GameSession
from gm.classification import classify_setting
from gm.errors import GameMasterError, OracleUnavailable
from gm.infra.redis_client import create_redis
from gm.lifecycle import scan_idle_sessions
from gm.lock import session_lock
from gm.session_store import notify, require_session
from gm.session_setup import install_built_campaign
from gm.settings import settings_from_env
from gm.streams import JOBS_STREAM_KEY
from gm.turn_processing.validators import validate_command

logger = logging.getLogger(__name__)

JOBS_GROUP = "gm:workers"
JOB_BUILD_CAMPAIGN = "build_campaign"


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    # How long to block waiting for a job; None returns immediately.
    block_ms: int | None = 250
    # Max jobs to read per iteration.
    count: int = 10
    consumer: str = f"worker:{socket.gethostname()}:{os.getpid()}"


def ensure_jobs_group(*, r: redis.Redis, stream_key: str = JOBS_STREAM_KEY, group: str = JOBS_GROUP) -> None:
    """Ensure the consumer group exists; MKSTREAM creates a missing stream."""

    try:
        r.xgroup_create(stream_key, group, id="0", mkstream=True)
    except redis.ResponseError as e:
        # BUSYGROUP is expected if it already exists.
        if "BUSYGROUP" not in str(e):
            raise


def request_campaign_build(*, r: redis.Redis, session_id: UUID, user_id: str) -> str:
    """Queue a (re)build of the session's campaign. Host only."""

    state = require_session(r=r, session_id=session_id)
    validate_command(state=state, user_id=user_id, command="build_campaign")
    job_id = r.xadd(
        JOBS_STREAM_KEY,
        {"type": JOB_BUILD_CAMPAIGN, "session_id": str(session_id), "requested_by": user_id},
    )
    notify(r=r, session_id=session_id, fields={"type": "campaign_build_queued", "job_id": str(job_id)})
    logger.info("Session %s: campaign build queued as %s", session_id, job_id)
    return str(job_id)


def _setting_text(state: GameSession) -> str:
    concept = state.game
    return "\n".join(p for p in (concept.setting, concept.original_request) if p.strip())


async def build_campaign(*, r: redis.Redis, oracle: Oracle, session_id: UUID) -> CampaignStructure:
    """Classify the setting, generate a campaign and install it.

    Holds a per-session build lock for the duration so two workers never
    generate competing campaigns for the same session.
    """

    with session_lock(r=r, session_id=str(session_id), purpose=JOB_BUILD_CAMPAIGN):
        state = require_session(r=r, session_id=session_id)
        setting = await classify_setting(text=_setting_text(state), oracle=oracle)
        logger.info(
            "Session %s: setting classified as %s (%.2f, %s)",
            session_id,
            setting.label,
            setting.confidence,
            setting.source,
        )

        try:
            campaign = await oracle.build_campaign(
                concept=state.game,
                characters=state.characters,
                setting_category=setting.label,
            )
        except Exception as e:
            logger.warning("Campaign generation failed for session %s", session_id, exc_info=True)
            raise OracleUnavailable("Campaign generation failed; please try again") from e

        install_built_campaign(r=r, session_id=session_id, campaign=campaign, setting_category=setting.label)
        notify(r=r, session_id=session_id, fields={"type": "campaign_ready", "setting_category": setting.label})
        return campaign


async def handle_job(*, r: redis.Redis, oracle: Oracle, fields: dict[str, str]) -> bool:
    """Handle one job entry. Returns True if it did any work."""

    if fields.get("type") != JOB_BUILD_CAMPAIGN:
        logger.info("Ignoring unknown job type %r", fields.get("type"))
        return False

    try:
        session_id = UUID(fields["session_id"])
    except (KeyError, ValueError):
        logger.warning("Dropping malformed build job: %r", fields)
        return False

    try:
        await build_campaign(r=r, oracle=oracle, session_id=session_id)
    except GameMasterError as e:
        logger.warning("Campaign build for session %s failed: %s", session_id, e)
        notify(r=r, session_id=session_id, fields={"type": "campaign_build_failed", "error": str(e)})
        return False
    return True


async def run_jobs_once(*, r: redis.Redis, oracle: Oracle, config: WorkerConfig | None = None) -> int:
    """Read and handle up to `config.count` new jobs. Returns how many did work."""

    cfg = config or WorkerConfig()
    ensure_jobs_group(r=r)

    resp = r.xreadgroup(JOBS_GROUP, cfg.consumer, {JOBS_STREAM_KEY: ">"}, count=cfg.count, block=cfg.block_ms)
    if not resp:
        return 0

    handled = 0
    for _stream, messages in resp:
        for msg_id, fields in messages:
            try:
                if await handle_job(r=r, oracle=oracle, fields=fields):
                    handled += 1
            except Exception:
                # One broken job must not strand the rest of the batch.
                logger.exception("Job %s failed unexpectedly", msg_id)
            finally:
                # Failed builds are reported on the session feed; the host re-queues.
                r.xack(JOBS_STREAM_KEY, JOBS_GROUP, msg_id)
    return handled


def run_idle_scan_once(*, r: redis.Redis) -> dict[str, str]:
    changed = scan_idle_sessions(r=r)
    if changed:
        logger.info("Idle scan changed %d session(s): %s", len(changed), changed)
    return changed


async def run_forever(*, r: redis.Redis, oracle: Oracle, config: WorkerConfig | None = None) -> None:
    settings = settings_from_env()
    loop = asyncio.get_running_loop()
    next_scan = 0.0
    while True:
        if loop.time() >= next_scan:
            run_idle_scan_once(r=r)
            next_scan = loop.time() + settings.idle_scan_seconds
        await run_jobs_once(r=r, oracle=oracle, config=config)
        await asyncio.sleep(0)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_forever(r=create_redis(), oracle=AgentOracle()))


if __name__ == "__main__":
    main()
