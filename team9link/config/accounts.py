"""Account listing and resolution for the team9 configuration block."""

import os
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from team9link.config.schema import (
    AccountConfig,
    Config,
    CredentialsConfig,
    DmPolicy,
    GroupConfig,
)

DEFAULT_ACCOUNT_ID = "default"
DEFAULT_BASE_URL = "http://localhost:3000"

TokenSource = Literal["env", "config", "none"]


@dataclass(frozen=True)
class ResolvedAccount:
    """Immutable snapshot of one bot account, resolved from config + environment."""

    account_id: str
    base_url: str
    ws_url: str
    enabled: bool = True
    name: str | None = None
    token: str = ""
    token_source: TokenSource = "none"
    dm_policy: DmPolicy = "pairing"
    allow_from: tuple[str, ...] = ()
    channel_allowlist: tuple[str, ...] = ()
    groups: Mapping[str, GroupConfig] = field(default_factory=dict)
    shared_groups: Mapping[str, GroupConfig] = field(default_factory=dict)

    @property
    def is_default(self) -> bool:
        return self.account_id == DEFAULT_ACCOUNT_ID

    @property
    def configured(self) -> bool:
        return bool(self.token)


def list_account_ids(config: Config) -> list[str]:
    """List configured account ids; the root-level account comes first as "default"."""
    team9 = config.team9
    account_ids = list(team9.accounts.keys())
    root_token = team9.credentials.token if team9.credentials else ""
    if (team9.base_url or root_token) and DEFAULT_ACCOUNT_ID not in account_ids:
        account_ids.insert(0, DEFAULT_ACCOUNT_ID)
    return account_ids


def default_account_id(config: Config) -> str:
    account_ids = list_account_ids(config)
    return account_ids[0] if account_ids else DEFAULT_ACCOUNT_ID


def derive_ws_url(base_url: str) -> str:
    """http(s)://host -> ws(s)://host/im"""
    base = base_url.rstrip("/")
    if base.startswith("http"):
        base = "ws" + base[len("http"):]
    return f"{base}/im"


def resolve_account(
    config: Config,
    account_id: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ResolvedAccount:
    """
    Resolve one account from configuration and environment.

    URLs fall back account -> root -> TEAM9_BASE_URL/TEAM9_WS_URL -> defaults.
    TEAM9_TOKEN takes priority over configured tokens for the default account
    only; named accounts always use their own credentials.
    """
    env = os.environ if environ is None else environ
    team9 = config.team9
    resolved_id = (account_id or "").strip() or default_account_id(config)
    is_default = resolved_id == DEFAULT_ACCOUNT_ID
    account = team9.accounts.get(resolved_id)

    base_url = (
        (account.base_url if account else "")
        or team9.base_url
        or env.get("TEAM9_BASE_URL", "")
        or DEFAULT_BASE_URL
    ).rstrip("/")
    ws_url = (
        (account.ws_url if account else "")
        or team9.ws_url
        or env.get("TEAM9_WS_URL", "")
        or derive_ws_url(base_url)
    )

    token, token_source = _resolve_token(config, account, is_default, env)

    dm_policy = (
        (account.dm.policy if account and account.dm else None)
        or team9.dm.policy
        or "pairing"
    )
    if account and account.dm and account.dm.allow_from:
        allow_from = account.dm.allow_from
    else:
        allow_from = team9.dm.allow_from

    if account and account.channels is not None:
        channel_allowlist = account.channels.allowlist
    elif is_default:
        channel_allowlist = team9.channels.allowlist
    else:
        channel_allowlist = []

    if account and account.enabled is not None:
        enabled = account.enabled
    else:
        enabled = team9.enabled

    return ResolvedAccount(
        account_id=resolved_id,
        name=(account.name if account else None) or (team9.name if is_default else None),
        enabled=enabled,
        base_url=base_url,
        ws_url=ws_url,
        token=token,
        token_source=token_source,
        dm_policy=dm_policy,
        allow_from=tuple(str(v) for v in allow_from),
        channel_allowlist=tuple(str(v) for v in channel_allowlist),
        groups=dict(account.groups) if account else {},
        shared_groups=dict(team9.groups),
    )


def _resolve_token(
    config: Config,
    account: AccountConfig | None,
    is_default: bool,
    env: Mapping[str, str],
) -> tuple[str, TokenSource]:
    env_token = (env.get("TEAM9_TOKEN") or "").strip()
    if is_default and env_token:
        return env_token, "env"
    if account and account.credentials and account.credentials.token:
        return account.credentials.token, "config"
    team9 = config.team9
    if is_default and team9.credentials and team9.credentials.token:
        return team9.credentials.token, "config"
    return "", "none"


def list_accounts(config: Config, environ: Mapping[str, str] | None = None) -> list[ResolvedAccount]:
    return [resolve_account(config, account_id, environ) for account_id in list_account_ids(config)]


def describe_account(account: ResolvedAccount) -> dict[str, Any]:
    """Status row for one account."""
    return {
        "account_id": account.account_id,
        "name": account.name,
        "enabled": account.enabled,
        "configured": account.configured,
        "base_url": account.base_url,
        "has_token": bool(account.token),
        "token_source": account.token_source,
    }


def apply_account_config(
    config: Config,
    account_id: str,
    *,
    base_url: str | None = None,
    ws_url: str | None = None,
    token: str | None = None,
    name: str | None = None,
) -> Config:
    """Return a copy of config with the given account fields applied and the channel enabled."""
    updated = config.model_copy(deep=True)
    team9 = updated.team9
    team9.enabled = True

    if account_id == DEFAULT_ACCOUNT_ID:
        if base_url is not None:
            team9.base_url = base_url
        if ws_url is not None:
            team9.ws_url = ws_url
        if token:
            team9.credentials = CredentialsConfig(token=token)
        if name is not None:
            team9.name = name
        return updated

    account = team9.accounts.get(account_id) or AccountConfig()
    if base_url is not None:
        account.base_url = base_url
    if ws_url is not None:
        account.ws_url = ws_url
    if token:
        account.credentials = CredentialsConfig(token=token)
    if name is not None:
        account.name = name
    team9.accounts[account_id] = account
    return updated


def set_account_enabled(config: Config, account_id: str, enabled: bool) -> Config:
    updated = config.model_copy(deep=True)
    if account_id == DEFAULT_ACCOUNT_ID:
        updated.team9.enabled = enabled
    else:
        account = updated.team9.accounts.get(account_id) or AccountConfig()
        account.enabled = enabled
        updated.team9.accounts[account_id] = account
    return updated


def delete_account(config: Config, account_id: str) -> Config:
    updated = config.model_copy(deep=True)
    if account_id == DEFAULT_ACCOUNT_ID:
        updated.team9.base_url = ""
        updated.team9.ws_url = ""
        updated.team9.credentials = None
    else:
        updated.team9.accounts.pop(account_id, None)
    return updated
