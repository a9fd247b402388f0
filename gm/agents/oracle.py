"""The narrative oracle as seen by the orchestration core.

The core never talks to an LLM directly: every call goes through `Oracle`.
`AgentOracle` is the production implementation over an AG2 chat agent; tests
substitute a scripted fake.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from gm.agents.base import Agent
from gm.agents.campaign_builder import build_campaign_with_agent, plan_session_beats_with_agent
from gm.agents.character_builder import generate_character_with_agent
from gm.agents.classifier import Verdict, classify_with_agent
from gm.agents.concept_builder import ConceptDraft, generate_concept_with_agent, regenerate_field_with_agent
from gm.agents.consequences import assess_consequences_with_agent
from gm.agents.autogen_config import OracleRole
from gm.agents.factory import create_role_agent
from gm.agents.narrator import (
    acknowledge_with_agent,
    answer_question_with_agent,
    recap_with_agent,
    resolve_action_with_agent,
)
from gm.api.models import (
    ActionResolution,
    CampaignStructure,
    Character,
    CharacterPreferences,
    ConceptField,
    ConsequenceAssessment,
    GameConcept,
    StoryBeat,
)
from gm.contexts import (
    make_campaign_designer_context,
    make_character_designer_context,
    make_classifier_context,
    make_game_master_context,
)
from gm.core.context import compose_context
from gm.genres import SETTING_TABLE, CategoryTable, category_descriptions
from gm.turn_processing.scene_context import SceneContext, render_scene_context


class Oracle(Protocol):
    async def classify(self, *, table: CategoryTable, text: str) -> Verdict:  # pragma: no cover
        ...

    async def assess_consequences(self, *, scene: SceneContext, action: str) -> ConsequenceAssessment:  # pragma: no cover
        ...

    async def acknowledge(self, *, scene: SceneContext, action: str) -> str:  # pragma: no cover
        ...

    async def resolve_action(self, *, scene: SceneContext, action: str) -> ActionResolution:  # pragma: no cover
        ...

    async def answer_question(self, *, scene: SceneContext, question: str) -> str:  # pragma: no cover
        ...

    async def plan_session_beats(self, *, scene: SceneContext, session_number: int) -> list[StoryBeat]:  # pragma: no cover
        ...

    async def recap(self, *, scene: SceneContext, session_number: int) -> str:  # pragma: no cover
        ...

    async def build_campaign(
        self,
        *,
        concept: GameConcept,
        characters: list[Character],
        setting_category: str,
    ) -> CampaignStructure:  # pragma: no cover
        ...

    async def generate_character(
        self,
        *,
        concept: GameConcept,
        existing: list[Character],
        preferences: CharacterPreferences,
    ) -> Character:  # pragma: no cover
        ...

    async def generate_concept(self, *, request: str) -> ConceptDraft:  # pragma: no cover
        ...

    async def regenerate_concept_field(self, *, concept: GameConcept, field: ConceptField) -> str:  # pragma: no cover
        ...


@dataclass(slots=True)
class AgentOracle:
    narrator: Agent = field(default_factory=lambda: create_role_agent(OracleRole.narrator))
    classifier: Agent = field(default_factory=lambda: create_role_agent(OracleRole.classifier))
    designer: Agent = field(default_factory=lambda: create_role_agent(OracleRole.campaign_designer))

    async def classify(self, *, table: CategoryTable, text: str) -> Verdict:
        descriptions = category_descriptions() if table is SETTING_TABLE else ""
        ctx = compose_context(base=make_classifier_context())
        return await classify_with_agent(agent=self.classifier, ctx=ctx, table=table, text=text, descriptions=descriptions)

    async def assess_consequences(self, *, scene: SceneContext, action: str) -> ConsequenceAssessment:
        ctx = render_scene_context(scene, base=make_game_master_context())
        return await assess_consequences_with_agent(agent=self.narrator, ctx=ctx, action=action)

    async def acknowledge(self, *, scene: SceneContext, action: str) -> str:
        ctx = render_scene_context(scene, base=make_game_master_context(), include_hidden=False)
        return await acknowledge_with_agent(agent=self.narrator, ctx=ctx, action=action)

    async def resolve_action(self, *, scene: SceneContext, action: str) -> ActionResolution:
        ctx = render_scene_context(scene, base=make_game_master_context())
        game = scene.session.game
        return await resolve_action_with_agent(
            agent=self.narrator,
            ctx=ctx,
            action=action,
            world=scene.session.world_state,
            campaign=scene.campaign,
            rules=game.rules_adapter,
            visibility=game.mechanics_visibility,
        )

    async def answer_question(self, *, scene: SceneContext, question: str) -> str:
        # Hidden material stays out of the prompt so it cannot leak into answers.
        ctx = render_scene_context(scene, base=make_game_master_context(), include_hidden=False)
        return await answer_question_with_agent(agent=self.narrator, ctx=ctx, question=question)

    async def plan_session_beats(self, *, scene: SceneContext, session_number: int) -> list[StoryBeat]:
        ctx = render_scene_context(scene, base=make_game_master_context())
        return await plan_session_beats_with_agent(agent=self.narrator, ctx=ctx, session_number=session_number)

    async def recap(self, *, scene: SceneContext, session_number: int) -> str:
        ctx = render_scene_context(scene, base=make_game_master_context(), include_hidden=False)
        return await recap_with_agent(agent=self.narrator, ctx=ctx, session_number=session_number)

    async def build_campaign(
        self,
        *,
        concept: GameConcept,
        characters: list[Character],
        setting_category: str,
    ) -> CampaignStructure:
        ctx = compose_context(base=make_campaign_designer_context())
        return await build_campaign_with_agent(
            agent=self.designer,
            ctx=ctx,
            concept=concept,
            characters=characters,
            setting_category=setting_category,
        )

    async def generate_character(
        self,
        *,
        concept: GameConcept,
        existing: list[Character],
        preferences: CharacterPreferences,
    ) -> Character:
        ctx = compose_context(base=make_character_designer_context())
        return await generate_character_with_agent(
            agent=self.designer,
            ctx=ctx,
            concept=concept,
            existing=existing,
            preferences=preferences,
        )

    async def generate_concept(self, *, request: str) -> ConceptDraft:
        ctx = compose_context(base=make_campaign_designer_context())
        return await generate_concept_with_agent(agent=self.designer, ctx=ctx, request=request)

    async def regenerate_concept_field(self, *, concept: GameConcept, field: ConceptField) -> str:
        ctx = compose_context(base=make_campaign_designer_context())
        return await regenerate_field_with_agent(agent=self.designer, ctx=ctx, concept=concept, field=field)
