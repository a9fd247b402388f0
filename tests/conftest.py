from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from pathlib import Path

import fakeredis
import pytest

from gm.agents.classifier import Verdict
from gm.agents.concept_builder import ConceptDraft
from gm.api.models import (
    ActionResolution,
    CampaignResolution,
    CampaignStructure,
    Character,
    CharacterStats,
    ConsequenceAssessment,
    ConvergenceTrigger,
    Face,
    Faction,
    FactionClock,
    GameConcept,
    GameSession,
    Node,
    PlayMode,
    Secret,
    Skill,
    StoryBeat,
    VictoryCondition,
    WorldUpdate,
)
from gm.genres import CategoryTable, Intent


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    In CI, we *don't* auto-load `.env` by default, so a developer's model
    settings never leak into the hermetic suite.
    Opt-in with: GM_LOAD_DOTENV_FOR_TESTS=1
    """

    if os.environ.get("CI") and os.environ.get("GM_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture(autouse=True)
def _default_gm_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep thresholds/timeouts at their documented defaults regardless of .env.
    for name in (
        "GM_INTENT_CONFIDENCE_THRESHOLD",
        "GM_SETTING_CONFIDENCE_THRESHOLD",
        "GM_DEFAULT_IDLE_TIMEOUT_MINUTES",
        "GM_IDLE_WARNING_LEAD_MINUTES",
        "GM_TXN_MAX_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)


# ---- campaign / session builders ----


def build_test_campaign() -> CampaignStructure:
    return CampaignStructure(
        campaign_issues=["The harbor is starving", "The old pact is failing"],
        campaign_aspects=["Salt and Smoke", "Every Debt Is Remembered", "The Tide Keeps Secrets"],
        factions=[
            Faction(
                name="Tide Guild",
                description="Smugglers who run the docks",
                clock=FactionClock(objective="Seize the lighthouse", steps=["a", "b", "c", "d"]),
            ),
            Faction(
                name="Grey Chapel",
                description="Zealots of the drowned god",
                clock=FactionClock(objective="Wake the deep one", steps=["a", "b", "c", "d"]),
            ),
        ],
        nodes=[
            Node(
                id="docks",
                title="The Docks",
                is_starting_node=True,
                description="Rotting piers in the fog.",
                leads=["The Lighthouse", "Chapel Crypt"],
                faces=[Face(name="Mara the Fence")],
                secrets=[Secret(id="s-ledger", trigger="search the office", revelation="The guild pays the chapel")],
            ),
            Node(id="lighthouse", title="The Lighthouse", leads=["The Docks", "Sunken Market"]),
            Node(id="crypt", title="Chapel Crypt", leads=["The Docks", "Governor's Hall"]),
            Node(id="market", title="Sunken Market", leads=["The Lighthouse", "Governor's Hall"]),
            Node(id="hall", title="Governor's Hall", leads=["Chapel Crypt", "Sunken Market"]),
        ],
        resolution=CampaignResolution(
            primary_objective="Stop the deep one from waking",
            hidden_truth="The governor made the pact",
            victory_conditions=[
                VictoryCondition(id="vc-ledger", description="Expose the guild's payments"),
                VictoryCondition(id="vc-pact", description="Break the pact"),
            ],
            convergence_triggers=[
                ConvergenceTrigger(condition="The lighthouse goes dark"),
                ConvergenceTrigger(condition="The chapel bell rings at noon"),
            ],
            climax_location="Governor's Hall",
        ),
    )


def build_test_beats(n: int = 12) -> list[StoryBeat]:
    return [StoryBeat(beat=i, intensity=min(5, 1 + i // 4), trigger=f"trigger {i}") for i in range(1, n + 1)]


class FakeOracle:
    """Scripted oracle. Every method yields to the event loop once, like a real call would."""

    def __init__(self) -> None:
        self.intent = Verdict(label=Intent.action.value, confidence=0.95, reasoning="fake")
        self.setting = Verdict(label="horror_gothic", confidence=0.9, reasoning="fake")
        self.classify_error: Exception | None = None

        self.assessment = ConsequenceAssessment(needs_confirmation=False)
        self.assess_error: Exception | None = None

        self.acknowledgement = "You steady yourself..."
        self.ack_error: Exception | None = None

        self.resolution = ActionResolution(
            narrative_result="It works out.",
            mechanics_details="Fight +2 vs 1: success",
            world_update=WorldUpdate(new_event="Something happened"),
        )
        self.resolve_error: Exception | None = None

        self.answer = "Nothing stirs."
        self.answer_error: Exception | None = None

        self.beats = build_test_beats(14)
        self.plan_error: Exception | None = None
        self.recap_text = "The party arrived at the docks."
        self.recap_error: Exception | None = None

        self.campaign = build_test_campaign()
        self.build_error: Exception | None = None

        self.character = Character(
            id="",
            name="Wren Hale",
            description="A lamplighter who hears the drowned.",
            aspect="Keeper of the Last Lamp",
            archetype="Lamplighter",
            stats=CharacterStats(
                skills=[
                    Skill(name=n, rank=k)
                    for n, k in zip(["Notice", "Will", "Lore", "Athletics", "Empathy", "Stealth"], [3, 2, 2, 1, 1, 1])
                ],
                stunts=["Sees in the dark.", "Knows every alley."],
            ),
        )
        self.character_error: Exception | None = None
        self.concept = ConceptDraft(name="Tide of Bells", setting="A drowned cathedral city.", tone="melancholy wonder")
        self.concept_error: Exception | None = None
        self.field_value = "Freshly imagined."
        self.field_error: Exception | None = None

        self.calls: list[str] = []

    async def _call(self, name: str, error: Exception | None) -> None:
        self.calls.append(name)
        await asyncio.sleep(0)
        if error is not None:
            raise error

    async def classify(self, *, table: CategoryTable, text: str) -> Verdict:
        await self._call(f"classify:{table.name}", self.classify_error)
        return self.intent if table.name == "intent" else self.setting

    async def assess_consequences(self, *, scene, action: str) -> ConsequenceAssessment:
        await self._call("assess", self.assess_error)
        return self.assessment

    async def acknowledge(self, *, scene, action: str) -> str:
        await self._call("acknowledge", self.ack_error)
        return self.acknowledgement

    async def resolve_action(self, *, scene, action: str) -> ActionResolution:
        await self._call("resolve", self.resolve_error)
        return self.resolution

    async def answer_question(self, *, scene, question: str) -> str:
        await self._call("answer", self.answer_error)
        return self.answer

    async def plan_session_beats(self, *, scene, session_number: int) -> list[StoryBeat]:
        await self._call("plan", self.plan_error)
        return self.beats

    async def recap(self, *, scene, session_number: int) -> str:
        await self._call("recap", self.recap_error)
        return self.recap_text

    async def build_campaign(self, *, concept, characters, setting_category: str) -> CampaignStructure:
        await self._call("build_campaign", self.build_error)
        return self.campaign

    async def generate_character(self, *, concept, existing, preferences) -> Character:
        await self._call("generate_character", self.character_error)
        return self.character.model_copy(deep=True)

    async def generate_concept(self, *, request: str) -> ConceptDraft:
        await self._call("generate_concept", self.concept_error)
        return self.concept

    async def regenerate_concept_field(self, *, concept, field) -> str:
        await self._call(f"regenerate:{field.value}", self.field_error)
        return self.field_value


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture()
def campaign() -> CampaignStructure:
    return build_test_campaign()


HOST = "alice"
GUEST = "bob"


@pytest.fixture()
def make_play_session(r: fakeredis.FakeRedis) -> Callable[..., GameSession]:
    """Create a session that is already in play.

    Remote play: characters "a" and "b" claimed by alice (host) and bob.
    Hot-seat: same characters, all played from alice's device.
    """

    from gm.campaign import save_campaign
    from gm.session_setup import add_character, begin_play
    from gm.session_store import create_session, require_session
    from gm.turn_processing.turns import claim_slot

    def _make(*, play_mode: PlayMode = PlayMode.remote, n_characters: int = 2, claim: bool = True) -> GameSession:
        state = create_session(
            r=r,
            user_id=HOST,
            host_name="Alice",
            concept=GameConcept(name="Harbor of Salt", setting="A gothic harbor town", play_mode=play_mode),
        )
        sid = state.session_id
        for cid, name in list(zip("abc", ["Ash", "Bram", "Cato"]))[:n_characters]:
            add_character(r=r, session_id=sid, user_id=HOST, character=Character(id=cid, name=name))
        save_campaign(r=r, session_id=sid, campaign=build_test_campaign())
        begin_play(r=r, session_id=sid, user_id=HOST)
        if play_mode == PlayMode.remote and claim:
            claim_slot(r=r, session_id=sid, slot_id="a", user_id=HOST, player_name="Alice")
            if n_characters > 1:
                claim_slot(r=r, session_id=sid, slot_id="b", user_id=GUEST, player_name="Bob")
        return require_session(r=r, session_id=sid)

    return _make


@pytest.fixture()
def client_and_redis(r: fakeredis.FakeRedis, oracle: FakeOracle) -> Generator[tuple, None, None]:
    """FastAPI TestClient wired to fakeredis and the scripted oracle."""

    from fastapi.testclient import TestClient

    from gm.api.deps import get_oracle, get_redis
    from gm.main import app

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_oracle] = lambda: oracle
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
