from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

import redis

from gm.errors import ConflictError

logger = logging.getLogger(__name__)


def _release(*, r: redis.Redis, key: str, token: str) -> None:
    """Delete `key` only if we still own it."""

    with r.pipeline() as pipe:
        try:
            pipe.watch(key)
            if pipe.get(key) != token:
                logger.info("Lock %s expired or was taken over before release", key)
                return
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
        except redis.WatchError:
            logger.info("Lock %s changed during release; leaving it to its new owner", key)


@contextmanager
def session_lock(*, r: redis.Redis, session_id: str, purpose: str, ttl_ms: int = 120_000) -> Iterator[str]:
    """Per-session lock for long-running background work (e.g. campaign builds).

    Not used for turn commits; those go through optimistic transactions.
    Each holder gets a unique token so an expired holder cannot release a
    lock somebody else has since acquired.
    """

    key = f"gm:lock:{purpose}:{session_id}"
    token = uuid4().hex
    acquired = r.set(key, token, nx=True, px=ttl_ms)
    if not acquired:
        raise ConflictError(f"A {purpose.replace('_', ' ')} is already running for session {session_id}")
    try:
        yield token
    finally:
        _release(r=r, key=key, token=token)
