from __future__ import annotations

import re
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


MAX_RECENT_EVENTS = 5
CLOCK_MAX = 4


def slugify(s: str) -> str:
    s = s.strip().casefold()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SessionStep(StrEnum):
    create = "create"
    summary = "summary"
    characters = "characters"
    play = "play"


class SessionStatus(StrEnum):
    active = "active"
    paused = "paused"
    finished = "finished"


class PauseReason(StrEnum):
    natural = "natural"
    interrupted = "interrupted"
    early = "early"
    idle_timeout = "idle_timeout"


class PlayMode(StrEnum):
    # Hot-seat: several characters share one device.
    local = "local"
    remote = "remote"


class MessageRole(StrEnum):
    user = "user"
    assistant = "assistant"
    system = "system"


class MechanicsVisibility(StrEnum):
    hidden = "Hidden"
    minimal = "Minimal"
    full = "Full"


class RulesAdapter(StrEnum):
    fate_core = "FateCore"
    savage_worlds = "SavageWorlds"


class DiscoveryLevel(StrEnum):
    unknown = "unknown"
    rumored = "rumored"
    visited = "visited"
    explored = "explored"
    resolved = "resolved"


# ---------------------------------------------------------------------------
# Characters / players
# ---------------------------------------------------------------------------


class Skill(BaseModel):
    name: str
    rank: int = 0


class CharacterStats(BaseModel):
    skills: list[Skill] = Field(default_factory=list)
    stunts: list[str] = Field(default_factory=list)


class Character(BaseModel):
    # Doubles as the slot id in multiplayer games.
    id: str
    name: str
    description: str = ""
    aspect: str = ""
    pronouns: str = ""
    age: str = ""
    archetype: str = ""
    player_name: str = ""
    # User id of the player bound to this slot (remote play only).
    player_id: str | None = None
    stats: CharacterStats = Field(default_factory=CharacterStats)
    is_custom: bool = False


class PlayerRecord(BaseModel):
    user_id: str
    name: str
    is_host: bool = False
    joined_at: datetime
    last_active: datetime
    claimed_character_id: str | None = None


# ---------------------------------------------------------------------------
# Campaign structure
# ---------------------------------------------------------------------------


class FactionClock(BaseModel):
    value: int = Field(0, ge=0)
    max: int = CLOCK_MAX
    objective: str = ""
    steps: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _bounded(self) -> "FactionClock":
        if self.value > self.max:
            raise ValueError(f"clock value {self.value} exceeds max {self.max}")
        return self

    @property
    def is_full(self) -> bool:
        return self.value >= self.max


class Faction(BaseModel):
    name: str
    description: str = ""
    clock: FactionClock = Field(default_factory=FactionClock)


class Face(BaseModel):
    name: str
    role: str = ""
    aspect: str = ""
    description: str = ""


class Secret(BaseModel):
    id: str
    trigger: str
    revelation: str
    impact: str = ""


class Node(BaseModel):
    id: str = ""
    title: str
    description: str = ""
    is_starting_node: bool = False
    leads: list[str] = Field(default_factory=list)
    stakes: str = ""
    challenges: list[str] = Field(default_factory=list)
    faces: list[Face] = Field(default_factory=list)
    aspects: list[str] = Field(default_factory=list)
    hidden_agenda: str | None = None
    secrets: list[Secret] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_id(self) -> "Node":
        if not self.id.strip():
            self.id = slugify(self.title)
        return self


class VictoryCondition(BaseModel):
    id: str
    description: str
    achieved: bool = False


class ConvergenceTrigger(BaseModel):
    condition: str
    triggered: bool = False
    result: str = ""


class CampaignResolution(BaseModel):
    primary_objective: str
    hidden_truth: str = ""
    victory_conditions: list[VictoryCondition] = Field(default_factory=list)
    convergence_triggers: list[ConvergenceTrigger] = Field(default_factory=list)
    climax_ready: bool = False
    climax_location: str | None = None
    involved_factions: list[str] = Field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        """All victory conditions met, or the climax has been unlocked."""

        if self.climax_ready:
            return True
        return bool(self.victory_conditions) and all(v.achieved for v in self.victory_conditions)


class StoryBeat(BaseModel):
    beat: int = Field(..., ge=1, le=20)
    intensity: int = Field(..., ge=1, le=5)
    trigger: str
    beat_type: str = "exploration"
    expected_faction_advancement: str = ""
    suggested_location: str = ""
    description: str = ""
    is_flexible: bool = True
    is_potential_session_break: bool = False


class CampaignStructure(BaseModel):
    campaign_issues: list[str] = Field(..., min_length=2, max_length=2)
    campaign_aspects: list[str] = Field(..., min_length=3, max_length=5)
    factions: list[Faction] = Field(..., min_length=2, max_length=3)
    nodes: list[Node] = Field(..., min_length=5, max_length=7)
    resolution: CampaignResolution | None = None

    @model_validator(mode="after")
    def _graph_is_consistent(self) -> "CampaignStructure":
        from gm.campaign import validate_node_graph

        validate_node_graph(self.nodes)
        return self


# ---------------------------------------------------------------------------
# World state
# ---------------------------------------------------------------------------


class Place(BaseModel):
    name: str
    description: str = ""


class Scene(BaseModel):
    node_id: str
    name: str = ""
    description: str = ""
    present_characters: list[str] = Field(default_factory=list)
    present_npcs: list[str] = Field(default_factory=list)
    environmental_factors: list[str] = Field(default_factory=list)
    connections: list[str] = Field(default_factory=list)


class NodeState(BaseModel):
    discovery_level: DiscoveryLevel = DiscoveryLevel.unknown
    player_knowledge: list[str] = Field(default_factory=list)
    revealed_secrets: list[str] = Field(default_factory=list)


class SessionProgress(BaseModel):
    current_session: int = Field(1, ge=1)
    current_beat: int = Field(0, ge=0)
    beats_completed: int = Field(0, ge=0)
    beats_planned: int = Field(0, ge=0)


class WorldState(BaseModel):
    summary: str = ""
    story_outline: list[str] = Field(default_factory=list)
    # Newest first.
    recent_events: list[str] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    places: list[Place] = Field(default_factory=list)
    known_places: list[Place] = Field(default_factory=list)
    known_factions: list[str] = Field(default_factory=list)
    story_aspects: list[str] = Field(default_factory=list)
    current_scene: Scene | None = None
    factions: list[Faction] = Field(default_factory=list)
    setting_category: str = "generic"
    session_progress: SessionProgress = Field(default_factory=SessionProgress)
    resolution: CampaignResolution | None = None
    node_states: dict[str, NodeState] = Field(default_factory=dict)
    turn: int = 0

    last_activity: datetime | None = None
    auto_end_enabled: bool = True
    idle_timeout_minutes: int = Field(120, ge=1)
    idle_warning_shown: bool = False

    @field_validator("recent_events")
    @classmethod
    def _bounded_events(cls, v: list[str]) -> list[str]:
        return v[:MAX_RECENT_EVENTS]


# ---------------------------------------------------------------------------
# Oracle output shapes consumed by the core
# ---------------------------------------------------------------------------


class SceneChange(BaseModel):
    node_id: str
    name: str = ""
    description: str = ""
    present_npcs: list[str] = Field(default_factory=list)
    environmental_factors: list[str] = Field(default_factory=list)


class ClockAdvance(BaseModel):
    faction: str
    ticks: int = Field(1, ge=1, le=CLOCK_MAX)


class WorldUpdate(BaseModel):
    """Structured delta that accompanies a resolved action.

    Produced by the narration oracle and applied as a merge-patch; every field
    is optional so a terse oracle still yields a valid update.
    """

    summary: str | None = None
    new_event: str | None = None
    outline_add: list[str] = Field(default_factory=list)
    outline_resolved: list[str] = Field(default_factory=list)
    new_places: list[Place] = Field(default_factory=list)
    discovered_factions: list[str] = Field(default_factory=list)
    scene_change: SceneChange | None = None
    faction_advances: list[ClockAdvance] = Field(default_factory=list)
    achieved_conditions: list[str] = Field(default_factory=list)
    triggered_convergence: list[str] = Field(default_factory=list)
    revealed_secrets: list[str] = Field(default_factory=list)
    beat_completed: bool = False


class ActionResolution(BaseModel):
    narrative_result: str = Field(..., min_length=1)
    mechanics_details: str | None = None
    world_update: WorldUpdate = Field(default_factory=WorldUpdate)


class ConsequenceAssessment(BaseModel):
    needs_confirmation: bool
    confirmation_message: str | None = None


# ---------------------------------------------------------------------------
# Session aggregate
# ---------------------------------------------------------------------------


class Message(BaseModel):
    id: str
    role: MessageRole
    content: str
    author_name: str | None = None
    mechanics: str | None = None


class StoryMessage(BaseModel):
    content: str


class GameConcept(BaseModel):
    name: str
    setting: str
    tone: str = ""
    original_request: str = ""
    play_mode: PlayMode = PlayMode.remote
    rules_adapter: RulesAdapter = RulesAdapter.fate_core
    mechanics_visibility: MechanicsVisibility = MechanicsVisibility.hidden


class ConceptField(StrEnum):
    """Concept fields the designer can rewrite on their own."""

    setting = "setting"
    tone = "tone"


class UndoMarker(BaseModel):
    """Session-level state captured alongside `previous_world_state`."""

    message_count: int
    story_message_count: int
    active_character_id: str | None = None
    pending_handoff_character_id: str | None = None


class GameSession(BaseModel):
    session_id: UUID
    # Owner and host.
    user_id: str
    created_at: datetime
    last_updated_at: datetime

    game: GameConcept
    step: SessionStep = SessionStep.summary
    session_status: SessionStatus = SessionStatus.active
    pause_reason: PauseReason | None = None

    world_state: WorldState = Field(default_factory=WorldState)
    previous_world_state: WorldState | None = None
    undo_marker: UndoMarker | None = None

    messages: list[Message] = Field(default_factory=list)
    story_messages: list[StoryMessage] = Field(default_factory=list)

    active_character_id: str | None = None
    pending_handoff_character_id: str | None = None
    session_beats: list[StoryBeat] = Field(default_factory=list)

    # Bumped on every stored write.
    version: int = 0
    # Bumped whenever turn ownership or world state moves on.
    turn_version: int = 0

    @property
    def characters(self) -> list[Character]:
        return self.world_state.characters

    def character(self, character_id: str | None) -> Character | None:
        if character_id is None:
            return None
        return next((c for c in self.world_state.characters if c.id == character_id), None)


# ---------------------------------------------------------------------------
# API request / response bodies
# ---------------------------------------------------------------------------


class SessionCreateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    host_name: str = "Host"
    name: str = Field(..., min_length=1, max_length=200)
    setting: str = Field(..., min_length=1)
    tone: str = ""
    original_request: str = ""
    play_mode: PlayMode = PlayMode.remote
    mechanics_visibility: MechanicsVisibility = MechanicsVisibility.hidden


class ActorRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class JoinRequest(ActorRequest):
    name: str = Field(..., min_length=1, max_length=100)


class AddCharacterRequest(ActorRequest):
    character: Character


class CharacterPreferences(BaseModel):
    """Optional steer for a generated character; blank fields are left to the designer."""

    name: str = Field("", max_length=100)
    vision: str = Field("", max_length=1000)
    pronouns: str = Field("", max_length=50)
    age: str = Field("", max_length=50)
    archetype: str = Field("", max_length=100)
    player_name: str = Field("", max_length=100)


class GenerateCharacterRequest(ActorRequest):
    preferences: CharacterPreferences = Field(default_factory=CharacterPreferences)


class RegenerateFieldRequest(ActorRequest):
    field: ConceptField


class RegenerateConceptRequest(ActorRequest):
    # Blank reuses the request the game was created from.
    request: str = Field("", max_length=4000)


class RenameRequest(ActorRequest):
    name: str = Field(..., max_length=200)


class ClaimSlotRequest(ActorRequest):
    player_name: str = Field("", max_length=100)


class SubmitInputRequest(ActorRequest):
    text: str = Field(..., min_length=1, max_length=4000)
    confirmed: bool = False
    # Hot-seat only: which character is acting.
    character_id: str | None = None


class PauseRequest(ActorRequest):
    reason: PauseReason = PauseReason.natural


class IdleConfigRequest(ActorRequest):
    auto_end_enabled: bool = True
    idle_timeout_minutes: int = Field(120, ge=31, le=24 * 60)


class SessionListResponse(BaseModel):
    sessions: list[GameSession]


class SubmitResponse(BaseModel):
    outcome: str
    intent: str
    classification_source: str
    session: GameSession
    confirmation_message: str | None = None
    answer: str | None = None


class EventFeedResponse(BaseModel):
    session_id: str
    stream: str
    events: list[dict[str, Any]]
