from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

from gm.api.models import GameSession

logger = logging.getLogger(__name__)


class SessionWebSocketHub:
    """In-process WebSocket fan-out keyed by session_id.

    Clients are only told *that* something changed (plus version counters) and
    re-fetch the session; the redis event stream stays the durable record.
    Delivery is best-effort and never blocks a write.
    """

    def __init__(self) -> None:
        self._by_session: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_session[session_id].add(websocket)

    async def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_session.get(session_id)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_session.pop(session_id, None)

    def connection_count(self, session_id: str) -> int:
        return len(self._by_session.get(session_id, ()))

    async def broadcast(self, session_id: str, payload: dict[str, object]) -> None:
        async with self._lock:
            conns = list(self._by_session.get(session_id, set()))

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                logger.debug("Dropping websocket for session %s", session_id, exc_info=True)
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._by_session.get(session_id, set()).discard(ws)

    async def session_changed(self, state: GameSession, *, event: str = "session_updated") -> None:
        await self.broadcast(
            str(state.session_id),
            {
                "type": event,
                "session_id": str(state.session_id),
                "version": state.version,
                "turn_version": state.turn_version,
                "status": state.session_status.value,
                "active_character_id": state.active_character_id,
                "pending_handoff_character_id": state.pending_handoff_character_id,
            },
        )


hub = SessionWebSocketHub()
