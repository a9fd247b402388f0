from __future__ import annotations

from dataclasses import dataclass

from gm.api.models import CampaignStructure, Character, GameSession
from gm.core.context import BaseAgentContext, CharacterContext, RenderedContext, SessionContext, compose_context
from gm.core.world_text import WorldParagraphOptions, world_state_to_paragraph


@dataclass(frozen=True, slots=True)
class SceneContext:
    """Everything an oracle call may know about the current moment of play.

    Built from a snapshot read before the oracle call; the write-back that
    follows re-checks the stored session rather than trusting this snapshot.
    """

    session: GameSession
    campaign: CampaignStructure | None = None
    character: Character | None = None

    @property
    def session_number(self) -> int:
        return self.session.world_state.session_progress.current_session


def scene_context_for(
    *,
    session: GameSession,
    campaign: CampaignStructure | None,
    character_id: str | None = None,
) -> SceneContext:
    character = session.character(character_id or session.active_character_id)
    return SceneContext(session=session, campaign=campaign, character=character)


def _character_context(c: Character) -> CharacterContext:
    skills = ", ".join(f"{s.name} +{s.rank}" for s in c.stats.skills)
    return CharacterContext(
        character_id=c.id,
        name=c.name,
        description=c.description,
        aspect=c.aspect,
        skills=skills,
    )


def render_scene_context(
    scene: SceneContext,
    *,
    base: BaseAgentContext,
    include_hidden: bool = True,
) -> RenderedContext:
    game = scene.session.game
    world_text = world_state_to_paragraph(
        world=scene.session.world_state,
        campaign=scene.campaign,
        options=WorldParagraphOptions(include_hidden=include_hidden),
    )
    return compose_context(
        base=base,
        session=SessionContext(
            game_name=game.name,
            setting=game.setting,
            tone=game.tone,
            rules_adapter=game.rules_adapter.value,
            mechanics_visibility=game.mechanics_visibility.value,
            world_text=world_text,
        ),
        character=_character_context(scene.character) if scene.character is not None else None,
    )
