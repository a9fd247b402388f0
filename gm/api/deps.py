from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache

import redis

from gm.agents.oracle import AgentOracle, Oracle
from gm.infra.redis_client import create_redis


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


@lru_cache(maxsize=1)
def _default_oracle() -> AgentOracle:
    return AgentOracle()


def get_oracle() -> Oracle:
    """Oracle used by routes; tests override this dependency with a fake."""

    return _default_oracle()
