"""Direct-message access policy."""

from typing import Literal

from team9link.config.accounts import ResolvedAccount

DmAccess = Literal["allow", "block", "pairing"]


def is_sender_allowed(allow_from: tuple[str, ...] | list[str], sender_id: str) -> bool:
    if "*" in allow_from:
        return True
    return str(sender_id) in {str(v) for v in allow_from}


def evaluate_dm_access(account: ResolvedAccount, sender_id: str) -> DmAccess:
    """
    Decide what to do with a direct message.

    ``disabled`` blocks everyone, ``open`` allows everyone, ``allowlist``
    allows listed senders only and ``pairing`` allows listed senders and asks
    the runtime to pair the rest.
    """
    policy = account.dm_policy
    if policy == "disabled":
        return "block"
    if policy == "open":
        return "allow"
    if is_sender_allowed(account.allow_from, sender_id):
        return "allow"
    return "pairing" if policy == "pairing" else "block"
