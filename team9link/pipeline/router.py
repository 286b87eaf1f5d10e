"""Deterministic agent/session routing for Team9 peers."""

import re
from dataclasses import dataclass
from typing import Literal

from team9link.config.accounts import DEFAULT_ACCOUNT_ID
from team9link.config.schema import RoutingRule

CHANNEL_TAG = "team9"

_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


@dataclass(frozen=True)
class Route:
    agent_id: str
    session_key: str
    matched_by: Literal["peer", "binding"]
    peer_kind: Literal["group", "dm"]
    account_id: str


def sanitize_identifier(value: str) -> str:
    return _UNSAFE.sub("-", str(value or "")).lower()


def generate_agent_id(account_id: str, peer_id: str, is_group: bool) -> str:
    """
    ``team9-{group|user}-{id}``; non-default accounts add their id after the
    prefix so single-account deployments keep their identifiers.
    """
    kind = "group" if is_group else "user"
    peer = sanitize_identifier(peer_id)
    if account_id and account_id != DEFAULT_ACCOUNT_ID:
        return f"team9-{sanitize_identifier(account_id)}-{kind}-{peer}"
    return f"team9-{kind}-{peer}"


def build_session_key(agent_id: str, channel_id: str, is_group: bool) -> str:
    peer_kind = "group" if is_group else "dm"
    return f"agent:{agent_id}:{CHANNEL_TAG}:{peer_kind}:{channel_id}".lower()


def resolve_route(account_id: str, channel_id: str, sender_id: str, is_group: bool) -> Route:
    """Groups share one agent per channel; DMs get one agent per sender."""
    peer_id = channel_id if is_group else sender_id
    agent_id = generate_agent_id(account_id, peer_id, is_group)
    return Route(
        agent_id=agent_id,
        session_key=build_session_key(agent_id, channel_id, is_group),
        matched_by="peer",
        peer_kind="group" if is_group else "dm",
        account_id=account_id,
    )


class Router:
    """resolve_route with configured top-down bindings applied first."""

    def __init__(self, rules: list[RoutingRule] | None = None):
        self.rules = list(rules or [])

    def resolve(self, account_id: str, channel_id: str, sender_id: str, is_group: bool) -> Route:
        for rule in self.rules:
            if self._rule_matches(rule, account_id, channel_id, sender_id, is_group):
                agent_id = sanitize_identifier(rule.agent)
                return Route(
                    agent_id=agent_id,
                    session_key=build_session_key(agent_id, channel_id, is_group),
                    matched_by="binding",
                    peer_kind="group" if is_group else "dm",
                    account_id=account_id,
                )
        return resolve_route(account_id, channel_id, sender_id, is_group)

    @staticmethod
    def _match_value(rule_value: str | list[str] | None, actual: str) -> bool:
        if rule_value is None:
            return True
        if isinstance(rule_value, list):
            return actual in {str(v) for v in rule_value}
        return actual == str(rule_value)

    @classmethod
    def _rule_matches(
        cls,
        rule: RoutingRule,
        account_id: str,
        channel_id: str,
        sender_id: str,
        is_group: bool,
    ) -> bool:
        if not cls._match_value(rule.account_id, account_id):
            return False
        if not cls._match_value(rule.channel_id, channel_id):
            return False
        if not cls._match_value(rule.sender_id, sender_id):
            return False
        if rule.is_group is not None and rule.is_group != is_group:
            return False
        return True
