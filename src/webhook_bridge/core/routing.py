"""Map (channel, account, peer) onto a backend agent and session key."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PeerKind = Literal["dm", "group"]


@dataclass(frozen=True, slots=True)
class AgentRoute:
    agent_id: str
    account_id: str
    session_key: str


def build_session_key(agent_id: str, channel: str, peer_kind: PeerKind, peer_id: str) -> str:
    return f"agent:{agent_id}:{channel}:{peer_kind}:{peer_id}"


def resolve_agent_route(
    channel: str,
    account_id: str,
    peer_kind: PeerKind,
    peer_id: str,
    agent_id: str = "main",
) -> AgentRoute:
    return AgentRoute(
        agent_id=agent_id,
        account_id=account_id,
        session_key=build_session_key(agent_id, channel, peer_kind, peer_id),
    )
