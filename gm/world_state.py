"""World State Store: merge-patch operations over `WorldState`.

All functions here are pure: they take a world state and return a new one.
Persistence and concurrency are handled by `gm.session_store.transact`.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from gm.api.models import (
    MAX_RECENT_EVENTS,
    CampaignStructure,
    Character,
    DiscoveryLevel,
    Node,
    NodeState,
    Place,
    Scene,
    WorldState,
    WorldUpdate,
)
from gm.campaign import lead_targets, node_by_id, node_by_title, starting_node

logger = logging.getLogger(__name__)

_DISCOVERY_ORDER = list(DiscoveryLevel)


def _norm(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip().casefold()


def push_recent_event(events: list[str], event: str) -> list[str]:
    """Newest first, bounded to MAX_RECENT_EVENTS."""

    event = event.strip()
    if not event:
        return list(events[:MAX_RECENT_EVENTS])
    return [event, *events][:MAX_RECENT_EVENTS]


def _raise_discovery(world: WorldState, node_id: str, level: DiscoveryLevel) -> None:
    state = world.node_states.setdefault(node_id, NodeState())
    if _DISCOVERY_ORDER.index(level) > _DISCOVERY_ORDER.index(state.discovery_level):
        state.discovery_level = level


def _add_place(places: list[Place], place: Place) -> None:
    if any(_norm(p.name) == _norm(place.name) for p in places):
        return
    places.append(place)


def _enter_node(world: WorldState, campaign: CampaignStructure, node: Node, *, scene: Scene) -> None:
    present = [c.id for c in world.characters]
    world.current_scene = scene.model_copy(
        update={
            "present_characters": scene.present_characters or present,
            "connections": [t.title for t in lead_targets(campaign, node)],
        }
    )
    _raise_discovery(world, node.id, DiscoveryLevel.visited)
    for target in lead_targets(campaign, node):
        _raise_discovery(world, target.id, DiscoveryLevel.rumored)
    place = Place(name=node.title, description=node.description)
    _add_place(world.places, place)
    _add_place(world.known_places, place)


def _resolve_node(campaign: CampaignStructure, ref: str) -> Node | None:
    return node_by_id(campaign, ref) or node_by_title(campaign, ref)


def install_campaign(
    *,
    world: WorldState,
    campaign: CampaignStructure,
    setting_category: str | None = None,
) -> WorldState:
    """Mirror a (re)built campaign into the world state and move to its starting node."""

    out = world.model_copy(deep=True)
    start = starting_node(campaign)

    out.factions = [f.model_copy(deep=True) for f in campaign.factions]
    out.known_factions = [n for n in out.known_factions if any(f.name == n for f in out.factions)]
    out.resolution = campaign.resolution.model_copy(deep=True) if campaign.resolution else None
    out.story_outline = [n.title for n in campaign.nodes]
    out.story_aspects = list(campaign.campaign_aspects)
    out.places = [Place(name=n.title, description=n.description) for n in campaign.nodes]
    out.node_states = {n.id: NodeState() for n in campaign.nodes}
    if setting_category:
        out.setting_category = setting_category

    _enter_node(
        out,
        campaign,
        start,
        scene=Scene(
            node_id=start.id,
            name=start.title,
            description=start.description,
            present_npcs=[f.name for f in start.faces],
        ),
    )
    return out


def start_world(
    *,
    characters: list[Character],
    campaign: CampaignStructure,
    setting_category: str,
    idle_timeout_minutes: int,
    now: datetime,
) -> WorldState:
    start = starting_node(campaign)
    base = WorldState(
        summary=f"The adventure begins with the party facing the situation at '{start.title}'.",
        recent_events=["The adventure has just begun."],
        characters=[c.model_copy(deep=True) for c in characters],
        idle_timeout_minutes=idle_timeout_minutes,
        last_activity=now,
    )
    return install_campaign(world=base, campaign=campaign, setting_category=setting_category)


def apply_world_update(
    *,
    world: WorldState,
    update: WorldUpdate,
    campaign: CampaignStructure | None,
    fallback_event: str,
) -> WorldState:
    """Merge an oracle-produced delta into a copy of `world`.

    Oracle output is untrusted: references to unknown nodes, factions or
    victory conditions are dropped rather than invented.
    """

    out = world.model_copy(deep=True)

    if update.summary and update.summary.strip():
        out.summary = update.summary.strip()

    resolved = {_norm(s) for s in update.outline_resolved}
    outline = [s for s in out.story_outline if _norm(s) not in resolved]
    for item in update.outline_add:
        if item.strip() and all(_norm(item) != _norm(s) for s in outline):
            outline.append(item.strip())
    out.story_outline = outline

    out.recent_events = push_recent_event(out.recent_events, update.new_event or fallback_event)

    for place in update.new_places:
        if place.name.strip():
            _add_place(out.places, place)
            _add_place(out.known_places, place)

    for name in update.discovered_factions:
        faction = next((f for f in out.factions if _norm(f.name) == _norm(name)), None)
        if faction is None:
            logger.debug("Ignoring unknown faction %r in world update", name)
            continue
        if faction.name not in out.known_factions:
            out.known_factions.append(faction.name)

    if update.scene_change is not None:
        change = update.scene_change
        node = _resolve_node(campaign, change.node_id) if campaign is not None else None
        if node is None:
            logger.warning("Ignoring scene change to unknown node %r", change.node_id)
        else:
            _enter_node(
                out,
                campaign,
                node,
                scene=Scene(
                    node_id=node.id,
                    name=change.name or node.title,
                    description=change.description or node.description,
                    present_npcs=change.present_npcs,
                    environmental_factors=change.environmental_factors,
                ),
            )

    for adv in update.faction_advances:
        faction = next((f for f in out.factions if _norm(f.name) == _norm(adv.faction)), None)
        if faction is None:
            logger.debug("Ignoring clock advance for unknown faction %r", adv.faction)
            continue
        faction.clock.value = min(faction.clock.max, faction.clock.value + adv.ticks)

    if out.resolution is not None:
        achieved = set(update.achieved_conditions)
        for vc in out.resolution.victory_conditions:
            if vc.id in achieved:
                vc.achieved = True
        triggered = {_norm(s) for s in update.triggered_convergence}
        for trig in out.resolution.convergence_triggers:
            if _norm(trig.condition) in triggered:
                trig.triggered = True
        triggers = out.resolution.convergence_triggers
        if triggers and all(t.triggered for t in triggers):
            out.resolution.climax_ready = True

    if update.revealed_secrets and out.current_scene is not None and campaign is not None:
        node = node_by_id(campaign, out.current_scene.node_id)
        if node is not None:
            known = {s.id for s in node.secrets}
            state = out.node_states.setdefault(node.id, NodeState())
            for sid in update.revealed_secrets:
                if sid in known and sid not in state.revealed_secrets:
                    state.revealed_secrets.append(sid)
            if known and known.issubset(state.revealed_secrets):
                _raise_discovery(out, node.id, DiscoveryLevel.explored)

    if update.beat_completed:
        progress = out.session_progress
        progress.beats_completed += 1
        progress.current_beat += 1
        if progress.beats_planned:
            progress.current_beat = min(progress.current_beat, progress.beats_planned)

    out.turn += 1
    return out
