"""Mention gating for group channels."""

import re
from dataclasses import dataclass

from loguru import logger

from team9link.config.accounts import ResolvedAccount
from team9link.config.schema import CommandsConfig, Config
from team9link.pipeline.commands import has_control_command

_TAG_RE = re.compile(r"<[^>]*>")
_MENTION_TAG_RE = re.compile(r"<mention\s[^>]*data-user-id=\"([^\"]+)\"[^>]*>", re.IGNORECASE)
_ANY_AT_RE = re.compile(r"@\w+")
_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


def strip_html(html: str) -> str:
    """Remove markup tags, decode the common entities and trim."""
    text = _TAG_RE.sub("", html or "")
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text.strip()


def extract_mentioned_user_ids(content: str) -> set[str]:
    """User ids referenced by ``<mention data-user-id="...">`` tags."""
    return set(_MENTION_TAG_RE.findall(content or ""))


def resolve_group_require_mention(account: ResolvedAccount, channel_id: str) -> bool:
    """
    Whether a group channel requires the bot to be mentioned.

    Lookup order: account groups[channel] -> shared groups[channel] ->
    account groups["*"] -> shared groups["*"] -> True.
    """
    channel_id = (channel_id or "").strip()
    for key in (channel_id, "*"):
        if not key:
            continue
        for groups in (account.groups, account.shared_groups):
            entry = groups.get(key)
            if entry is not None and entry.require_mention is not None:
                return entry.require_mention
    return True


def resolve_mention_patterns(config: Config, agent_id: str | None, bot_username: str | None = None) -> list[str]:
    """Agent-specific patterns when configured, otherwise the global ones, plus ``@username``."""
    patterns: list[str] = []
    agent = config.agents.get(agent_id) if agent_id else None
    if agent is not None and agent.mention_patterns is not None:
        patterns.extend(agent.mention_patterns)
    else:
        patterns.extend(config.team9.mentions.patterns)
    if bot_username:
        patterns.append(rf"(?<![\w.-])@{re.escape(bot_username)}\b")
    return patterns


def build_mention_regexes(patterns: list[str]) -> list[re.Pattern[str]]:
    regexes: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            regexes.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            logger.warning(f"Ignoring invalid mention pattern {pattern!r}: {e}")
    return regexes


@dataclass(frozen=True)
class MentionDecision:
    was_mentioned: bool
    effective_was_mentioned: bool
    should_skip: bool


class MentionGate:
    """Decides whether the bot reacts to a group message."""

    def __init__(self, commands: CommandsConfig | None = None):
        self.commands = commands or CommandsConfig()

    def evaluate(
        self,
        *,
        text: str,
        mentioned_user_ids: set[str],
        require_mention: bool,
        regexes: list[re.Pattern[str]],
        bot_user_id: str | None = None,
        bot_username: str | None = None,
        command_authorized: bool = True,
    ) -> MentionDecision:
        explicit = bool(bot_user_id and bot_user_id in mentioned_user_ids)
        has_any_mention = bool(mentioned_user_ids) or bool(_ANY_AT_RE.search(text))
        was_mentioned = explicit or any(r.search(text) for r in regexes)
        # Without a known identity or pattern nothing could ever match, so never skip.
        can_detect = bool(bot_user_id or bot_username) or bool(regexes)

        bypass = (
            require_mention
            and not was_mentioned
            and not has_any_mention
            and self.commands.text
            and command_authorized
            and has_control_command(text, self.commands.control)
        )
        effective = was_mentioned or bypass
        should_skip = require_mention and can_detect and not effective
        return MentionDecision(
            was_mentioned=was_mentioned,
            effective_was_mentioned=effective,
            should_skip=should_skip,
        )
