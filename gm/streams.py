from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, cast

import redis


@dataclass(frozen=True, slots=True)
class SessionFeed:
    """Per-session append-only event stream.

    Any number of readers may follow it with XREAD; writers never wait on them.
    """

    session_id: str

    @property
    def key(self) -> str:
        return f"gm:session:{self.session_id}:events"


JOBS_STREAM_KEY = "gm:jobs"


def publish_to_feed(
    *,
    r: redis.Redis,
    feed: SessionFeed,
    fields: Mapping[str, str],
    maxlen: int | None = None,
) -> str:
    """Append an entry to a session's event stream."""

    # redis-py stubs expect field/value unions; in our app we only use string fields/values.
    stream_id = r.xadd(feed.key, {str(k): str(v) for k, v in fields.items()}, maxlen=maxlen, approximate=True)
    return cast(str, stream_id)


def read_feed(
    *,
    r: redis.Redis,
    feed: SessionFeed,
    start: str = "-",
    end: str = "+",
    count: int = 20,
) -> list[tuple[str, dict[str, str]]]:
    return cast(list[tuple[str, dict[str, str]]], r.xrange(feed.key, min=start, max=end, count=count))
