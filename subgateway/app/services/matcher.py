from __future__ import annotations

from typing import Iterable, List, Set, Tuple

from ..core.errors import NoSuchSubscription
from ..models import ClientMatch, Inbound


def match_subscription(inbounds: Iterable[Inbound], sub_id: str) -> List[ClientMatch]:
    """Every client carrying ``sub_id``, in directory order, once per (inbound, client)."""
    target = str(sub_id or "")
    if not target:
        return []

    seen: Set[Tuple[int, str]] = set()
    matches: List[ClientMatch] = []
    for inbound in inbounds:
        for client in inbound.clients:
            if client.sub_id != target:
                continue
            match = ClientMatch(client=client, inbound_id=inbound.id, inbound_remark=inbound.remark)
            if match.key in seen:
                continue
            seen.add(match.key)
            matches.append(match)
    return matches


def require_matches(inbounds: Iterable[Inbound], sub_id: str) -> List[ClientMatch]:
    matches = match_subscription(inbounds, sub_id)
    if not matches:
        raise NoSuchSubscription(sub_id)
    return matches


def list_subscription_ids(inbounds: Iterable[Inbound]) -> List[str]:
    """Distinct non-empty subscription ids in first-seen order."""
    seen: Set[str] = set()
    out: List[str] = []
    for inbound in inbounds:
        for client in inbound.clients:
            sid = client.sub_id
            if sid and sid not in seen:
                seen.add(sid)
                out.append(sid)
    return out
