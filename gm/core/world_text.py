from __future__ import annotations

from dataclasses import dataclass

from gm.api.models import CampaignStructure, Character, DiscoveryLevel, WorldState


@dataclass(frozen=True, slots=True)
class WorldParagraphOptions:
    # Hidden agendas, secrets and the campaign's hidden truth are GM-only.
    include_hidden: bool = True


def _character_line(c: Character) -> str:
    bits = [c.name]
    if c.archetype:
        bits.append(c.archetype)
    if c.aspect:
        bits.append(f"aspect: {c.aspect}")
    if c.player_name:
        bits.append(f"played by {c.player_name}")
    return "- " + ", ".join(bits)


def _faction_lines(world: WorldState) -> list[str]:
    if not world.factions:
        return []
    lines = ["FACTIONS (clocks):"]
    for f in world.factions:
        known = "" if f.name in world.known_factions else " (unknown to players)"
        lines.append(f"- {f.name}{known}: {f.clock.value}/{f.clock.max} toward '{f.clock.objective}'")
    return lines


def _scene_lines(world: WorldState) -> list[str]:
    scene = world.current_scene
    if scene is None:
        return ["CURRENT SCENE: (none yet)"]
    lines = [f"CURRENT SCENE: {scene.name or scene.node_id}"]
    if scene.description:
        lines.append(scene.description.strip())
    if scene.present_npcs:
        lines.append(f"NPCs present: {', '.join(scene.present_npcs)}")
    if scene.environmental_factors:
        lines.append(f"Environment: {', '.join(scene.environmental_factors)}")
    if scene.connections:
        lines.append(f"Leads from here: {', '.join(scene.connections)}")
    return lines


def _campaign_lines(*, world: WorldState, campaign: CampaignStructure, include_hidden: bool) -> list[str]:
    lines = ["SITUATIONS:"]
    for n in campaign.nodes:
        level = world.node_states.get(n.id)
        status = level.discovery_level.value if level else DiscoveryLevel.unknown.value
        line = f"- [{n.id}] {n.title} ({status}); stakes: {n.stakes or 'n/a'}"
        if include_hidden and n.hidden_agenda:
            line += f"; hidden agenda: {n.hidden_agenda}"
        lines.append(line)
        if include_hidden:
            for s in n.secrets:
                revealed = level is not None and s.id in level.revealed_secrets
                if not revealed:
                    lines.append(f"    secret [{s.id}] when {s.trigger}: {s.revelation}")

    res = world.resolution
    if res is not None:
        lines.append(f"PRIMARY OBJECTIVE: {res.primary_objective}")
        if include_hidden and res.hidden_truth:
            lines.append(f"HIDDEN TRUTH: {res.hidden_truth}")
        for vc in res.victory_conditions:
            mark = "x" if vc.achieved else " "
            lines.append(f"- [{mark}] ({vc.id}) {vc.description}")
        pending = [t.condition for t in res.convergence_triggers if not t.triggered]
        if pending:
            lines.append(f"Convergence triggers pending: {'; '.join(pending)}")
        if res.climax_ready:
            lines.append(f"CLIMAX READY at {res.climax_location or 'a location of your choosing'}")
    return lines


def world_state_to_paragraph(
    *,
    world: WorldState,
    campaign: CampaignStructure | None = None,
    options: WorldParagraphOptions | None = None,
) -> str:
    """Render the world state as prompt text for the oracle."""

    opts = options or WorldParagraphOptions()
    parts: list[str] = []

    if world.summary:
        parts.append(f"SUMMARY: {world.summary.strip()}")

    progress = world.session_progress
    parts.append(
        f"SESSION {progress.current_session}, beat {progress.current_beat}"
        f" ({progress.beats_completed} completed of {progress.beats_planned or '?'} planned), turn {world.turn}"
    )

    if world.characters:
        parts.append("\n".join(["PARTY:", *[_character_line(c) for c in world.characters]]))

    parts.append("\n".join(_scene_lines(world)))

    if world.recent_events:
        parts.append("\n".join(["RECENT EVENTS (newest first):", *[f"- {e}" for e in world.recent_events]]))

    if world.story_outline:
        parts.append("\n".join(["OPEN THREADS:", *[f"- {s}" for s in world.story_outline]]))

    if world.story_aspects:
        parts.append(f"STORY ASPECTS: {', '.join(world.story_aspects)}")

    factions = _faction_lines(world)
    if factions:
        parts.append("\n".join(factions))

    if campaign is not None:
        parts.append("\n".join(_campaign_lines(world=world, campaign=campaign, include_hidden=opts.include_hidden)))

    return "\n\n".join(p for p in parts if p.strip()).strip()
