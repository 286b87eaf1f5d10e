"""Configuration module for team9link."""

from team9link.config.accounts import (
    DEFAULT_ACCOUNT_ID,
    ResolvedAccount,
    list_account_ids,
    resolve_account,
)
from team9link.config.loader import get_config_path, load_config
from team9link.config.schema import Config

__all__ = [
    "Config",
    "DEFAULT_ACCOUNT_ID",
    "ResolvedAccount",
    "get_config_path",
    "list_account_ids",
    "load_config",
    "resolve_account",
]
