"""Text control command detection."""

import re

from team9link.config.schema import DEFAULT_CONTROL_COMMANDS

_LEADING_MENTIONS = re.compile(r"^(?:@[\w.-]+[\s,:]*)+")


def normalize_command_text(text: str) -> str:
    """Strip leading @mentions and a trailing ``@botname`` on the command word."""
    raw = _LEADING_MENTIONS.sub("", (text or "").strip()).strip()
    if not raw.startswith("/"):
        return ""
    parts = raw.split(maxsplit=1)
    command = parts[0].split("@", 1)[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""
    return f"{command} {arg}".strip()


def has_control_command(text: str, commands: list[str] | None = None) -> bool:
    """True when the text starts with a recognized control command."""
    normalized = normalize_command_text(text)
    if not normalized:
        return False
    command = normalized.split(maxsplit=1)[0]
    known = {c.strip().lower() for c in (commands if commands is not None else DEFAULT_CONTROL_COMMANDS)}
    return command in known
