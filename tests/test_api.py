from __future__ import annotations

from uuid import uuid4

from conftest import GUEST, HOST
from gm.agents.classifier import Verdict
from gm.api.models import ConsequenceAssessment
from gm.genres import Intent


def _create(client, *, play_mode: str = "remote") -> str:
    res = client.post(
        "/sessions",
        json={
            "user_id": HOST,
            "host_name": "Alice",
            "name": "Harbor of Salt",
            "setting": "A haunted gothic harbor",
            "play_mode": play_mode,
        },
    )
    assert res.status_code == 201
    return res.json()["session_id"]


def _ready_session(client, *, play_mode: str = "remote") -> str:
    sid = _create(client, play_mode=play_mode)
    for cid, name in (("a", "Ash"), ("b", "Bram")):
        res = client.post(f"/sessions/{sid}/characters", json={"user_id": HOST, "character": {"id": cid, "name": name}})
        assert res.status_code == 200

    res = client.post(f"/sessions/{sid}/campaign", json={"user_id": HOST})
    assert res.status_code == 202
    assert res.json()["job_id"]
    assert client.post("/maintenance/jobs/run_once").json() == {"handled": 1}

    res = client.post(f"/sessions/{sid}/begin", json={"user_id": HOST})
    assert res.status_code == 200
    if play_mode == "remote":
        assert client.post(f"/sessions/{sid}/slots/a/claim", json={"user_id": HOST, "player_name": "Alice"}).status_code == 200
        assert client.post(f"/sessions/{sid}/slots/b/claim", json={"user_id": GUEST, "player_name": "Bob"}).status_code == 200
    return sid


def test_healthcheck_and_info(client_and_redis) -> None:
    client, _r = client_and_redis
    assert client.get("/healthcheck").json() == {"status": "ok", "redis": "ok"}
    assert client.get("/info").json()["name"] == "gm-orchestrator"


def test_healthcheck_reports_redis_down(client_and_redis, monkeypatch) -> None:
    client, _r = client_and_redis
    monkeypatch.setattr("gm.api.routes.redis_ready", lambda r: False)

    resp = client.get("/healthcheck")
    assert resp.status_code == 503
    assert resp.json()["detail"]["redis"] == "down"


def test_session_crud(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _create(client)

    assert client.get(f"/sessions/{sid}").json()["step"] == "summary"
    assert [s["session_id"] for s in client.get("/sessions", params={"user_id": HOST}).json()["sessions"]] == [sid]
    assert client.get("/sessions", params={"user_id": GUEST}).json()["sessions"] == []

    joined = client.post(f"/sessions/{sid}/players", json={"user_id": GUEST, "name": "Bob"})
    assert joined.status_code == 200
    assert [p["user_id"] for p in client.get(f"/sessions/{sid}/players").json()] == [HOST, GUEST]

    forbidden = client.delete(f"/sessions/{sid}", params={"user_id": GUEST})
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"]["error"] == "Forbidden"

    assert client.delete(f"/sessions/{sid}", params={"user_id": HOST}).status_code == 204
    assert client.get(f"/sessions/{sid}").status_code == 404


def test_unknown_session_is_404(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = uuid4()
    assert client.get(f"/sessions/{sid}/players").status_code == 404
    assert client.get(f"/sessions/{sid}/campaign").status_code == 404

    res = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I look around"})
    assert res.status_code == 404
    assert res.json()["detail"]["error"] == "SessionNotFound"


def test_begin_without_campaign_is_422(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _create(client)
    res = client.post(f"/sessions/{sid}/begin", json={"user_id": HOST})
    assert res.status_code == 422


def test_full_remote_turn(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)

    assert client.get(f"/sessions/{sid}/campaign").json()["nodes"][0]["id"] == "docks"

    res = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I search the office"})
    assert res.status_code == 200
    body = res.json()
    assert body["outcome"] == "resolved"
    assert body["intent"] == "Action"
    assert body["classification_source"] == "oracle"
    assert body["session"]["active_character_id"] == "b"

    wrong = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I search again"})
    assert wrong.status_code == 422
    assert wrong.json()["detail"]["error"] == "NotYourTurn"
    assert wrong.json()["detail"]["retryable"] is False

    undone = client.post(f"/sessions/{sid}/undo", json={"user_id": HOST})
    assert undone.status_code == 200
    assert undone.json()["active_character_id"] == "a"

    again = client.post(f"/sessions/{sid}/undo", json={"user_id": HOST})
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "NothingToUndo"


def test_confirmation_round_trip(client_and_redis, oracle) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)
    oracle.assessment = ConsequenceAssessment(needs_confirmation=True, confirmation_message="Really?")

    pending = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I betray the guild"}).json()
    assert pending["outcome"] == "pending_confirmation"
    assert pending["confirmation_message"] == "Really?"

    done = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I betray the guild", "confirmed": True})
    assert done.json()["outcome"] == "resolved"


def test_question_and_oracle_outage(client_and_redis, oracle) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)

    oracle.intent = Verdict(label=Intent.question.value, confidence=0.9)
    answered = client.post(f"/sessions/{sid}/input", json={"user_id": GUEST, "text": "Who runs the docks?"}).json()
    assert answered["outcome"] == "answered"
    assert answered["answer"] == "Nothing stirs."

    oracle.intent = Verdict(label=Intent.action.value, confidence=0.9)
    oracle.resolve_error = RuntimeError("down")
    res = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I attack"})
    assert res.status_code == 503
    assert res.json()["detail"]["retryable"] is True


def test_slots_claim_and_kick(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)

    taken = client.post(f"/sessions/{sid}/slots/a/claim", json={"user_id": "carol"})
    assert taken.status_code == 422
    assert taken.json()["detail"]["error"] == "AlreadyClaimed"

    assert client.post(f"/sessions/{sid}/slots/b/kick", json={"user_id": GUEST}).status_code == 403
    kicked = client.post(f"/sessions/{sid}/slots/b/kick", json={"user_id": HOST})
    assert kicked.status_code == 200
    assert kicked.json()["world_state"]["characters"][1]["player_id"] is None


def test_hot_seat_handoff(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client, play_mode="local")

    first = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I open the door"}).json()
    assert first["session"]["pending_handoff_character_id"] == "b"

    blocked = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I open it again"})
    assert blocked.json()["detail"]["error"] == "HandoffPending"

    handed = client.post(f"/sessions/{sid}/handoff", json={"user_id": HOST}).json()
    assert handed["active_character_id"] == "b"

    second = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I follow", "character_id": "b"})
    assert second.json()["outcome"] == "resolved"


def test_lifecycle_endpoints(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)

    paused = client.post(f"/sessions/{sid}/pause", json={"user_id": GUEST, "reason": "early"}).json()
    assert paused["session_status"] == "paused"
    assert paused["pause_reason"] == "early"

    blocked = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I attack"})
    assert blocked.status_code == 422
    assert blocked.json()["detail"]["error"] == "SessionPaused"

    assert client.post(f"/sessions/{sid}/next", json={"user_id": GUEST}).status_code == 403
    resumed = client.post(f"/sessions/{sid}/next", json={"user_id": HOST}).json()
    assert resumed["session_status"] == "active"
    assert resumed["world_state"]["session_progress"]["current_session"] == 2

    assert client.put(
        f"/sessions/{sid}/idle", json={"user_id": HOST, "auto_end_enabled": True, "idle_timeout_minutes": 60}
    ).json()["world_state"]["idle_timeout_minutes"] == 60
    assert client.post(f"/sessions/{sid}/activity").status_code == 200
    assert client.post(f"/sessions/{sid}/idle_check").json()["session_status"] == "active"
    assert client.post("/maintenance/idle_scan").json() == {"changed": {}}

    finished = client.post(f"/sessions/{sid}/finish", json={"user_id": HOST}).json()
    assert finished["session_status"] == "finished"
    again = client.post(f"/sessions/{sid}/pause", json={"user_id": HOST, "reason": "natural"})
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "SessionFinished"


def test_event_feed(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)
    client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I search the office"})

    feed = client.get(f"/sessions/{sid}/events", params={"count": 200}).json()
    assert feed["stream"] == f"gm:session:{sid}:events"
    types = [e["fields"]["type"] for e in feed["events"]]
    assert "play_started" in types
    assert types[-1] == "action_resolved"


def test_ws_broadcasts_session_changes(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)

    with client.websocket_connect(f"/ws/session/{sid}") as ws:
        res = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I search the office"})
        assert res.status_code == 200

        ack = ws.receive_json()
        assert ack == {"type": "acknowledgement", "session_id": sid, "character_id": "a", "text": "You steady yourself..."}

        msg = ws.receive_json()
        assert msg["type"] == "session_updated"
        assert msg["session_id"] == sid
        assert msg["active_character_id"] == "b"
        assert msg["turn_version"] == res.json()["session"]["turn_version"]


def test_acknowledgement_is_not_stored_when_resolution_fails(client_and_redis, oracle) -> None:
    client, _r = client_and_redis
    sid = _ready_session(client)
    oracle.resolve_error = RuntimeError("model down")

    res = client.post(f"/sessions/{sid}/input", json={"user_id": HOST, "text": "I search the office"})
    assert res.status_code == 503

    types = [e["fields"]["type"] for e in client.get(f"/sessions/{sid}/events", params={"count": 200}).json()["events"]]
    assert "acknowledgement" not in types
    assert "action_resolved" not in types


def test_generate_character_endpoint(client_and_redis, oracle) -> None:
    client, _r = client_and_redis
    sid = _create(client)

    res = client.post(
        f"/sessions/{sid}/characters/generate",
        json={"user_id": HOST, "preferences": {"pronouns": "she/her", "player_name": "Alice"}},
    )
    assert res.status_code == 200
    [character] = res.json()["characters"]
    assert character["id"] == "wren-hale"
    assert character["stats"]["stunts"] == ["Sees in the dark.", "Knows every alley."]

    oracle.character_error = RuntimeError("model down")
    failed = client.post(f"/sessions/{sid}/characters/generate", json={"user_id": HOST})
    assert failed.status_code == 503
    assert failed.json()["detail"]["retryable"] is True


def test_concept_editing_endpoints(client_and_redis) -> None:
    client, _r = client_and_redis
    sid = _create(client)

    res = client.post(f"/sessions/{sid}/concept/regenerate_field", json={"user_id": HOST, "field": "setting"})
    assert res.status_code == 200
    assert res.json()["game"]["setting"] == "Freshly imagined."

    bad_field = client.post(f"/sessions/{sid}/concept/regenerate_field", json={"user_id": HOST, "field": "name"})
    assert bad_field.status_code == 422

    res = client.post(f"/sessions/{sid}/concept/regenerate", json={"user_id": HOST, "request": "bells under the sea"})
    assert res.status_code == 200
    assert res.json()["game"]["name"] == "Tide of Bells"
    assert res.json()["game"]["original_request"] == "bells under the sea"

    assert client.put(f"/sessions/{sid}/name", json={"user_id": GUEST, "name": "Mine"}).status_code == 403
    assert client.put(f"/sessions/{sid}/name", json={"user_id": HOST, "name": " "}).status_code == 422
    renamed = client.put(f"/sessions/{sid}/name", json={"user_id": HOST, "name": "Bells"})
    assert renamed.status_code == 200
    assert renamed.json()["game"]["name"] == "Bells"
