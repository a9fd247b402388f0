"""Campaign Structure Store.

The campaign graph is generated once per campaign (and may be regenerated)
and is otherwise read-only. It lives in its own redis key next to the session
document so the hot session record stays small.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING
from uuid import UUID

import redis

if TYPE_CHECKING:
    from gm.api.models import CampaignStructure, Node


CAMPAIGN_KEY_SUFFIX = ":campaign"


class CampaignGraphError(ValueError):
    pass


def _norm_title(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip().casefold()


def campaign_key(session_id: UUID | str) -> str:
    from gm.session_store import session_key

    return session_key(session_id) + CAMPAIGN_KEY_SUFFIX


def validate_node_graph(nodes: Sequence["Node"]) -> None:
    """Exactly one starting node; every lead resolves to another node's title."""

    starting = [n for n in nodes if n.is_starting_node]
    if len(starting) != 1:
        raise CampaignGraphError(f"Expected exactly one starting node, found {len(starting)}")

    by_title: dict[str, str] = {}
    ids: set[str] = set()
    for n in nodes:
        key = _norm_title(n.title)
        if key in by_title:
            raise CampaignGraphError(f"Duplicate node title: {n.title}")
        by_title[key] = n.id
        if n.id in ids:
            raise CampaignGraphError(f"Duplicate node id: {n.id}")
        ids.add(n.id)

    for n in nodes:
        for lead in n.leads:
            target = by_title.get(_norm_title(lead))
            if target is None:
                raise CampaignGraphError(f"Node '{n.title}' has a lead to unknown node '{lead}'")
            if target == n.id:
                raise CampaignGraphError(f"Node '{n.title}' leads to itself")


def starting_node(campaign: "CampaignStructure") -> "Node":
    return next(n for n in campaign.nodes if n.is_starting_node)


def node_by_id(campaign: "CampaignStructure", node_id: str) -> "Node | None":
    return next((n for n in campaign.nodes if n.id == node_id), None)


def node_by_title(campaign: "CampaignStructure", title: str) -> "Node | None":
    key = _norm_title(title)
    return next((n for n in campaign.nodes if _norm_title(n.title) == key), None)


def lead_targets(campaign: "CampaignStructure", node: "Node") -> list["Node"]:
    out: list[Node] = []
    for lead in node.leads:
        target = node_by_title(campaign, lead)
        if target is not None:
            out.append(target)
    return out


def save_campaign(*, r: redis.Redis, session_id: UUID, campaign: "CampaignStructure") -> None:
    r.set(campaign_key(session_id), campaign.model_dump_json())


def get_campaign(*, r: redis.Redis, session_id: UUID) -> "CampaignStructure | None":
    from gm.api.models import CampaignStructure

    raw = r.get(campaign_key(session_id))
    if not raw:
        return None
    return CampaignStructure.model_validate_json(raw)


def require_campaign(*, r: redis.Redis, session_id: UUID) -> "CampaignStructure":
    campaign = get_campaign(r=r, session_id=session_id)
    if campaign is None:
        raise ValueError("Campaign has not been built yet")
    return campaign
