"""Per-account connection supervision."""

from team9link.gateway.supervisor import AccountState, Connection, ConnectionSupervisor
from team9link.gateway.watchdog import ConnectionWatchdog

__all__ = ["AccountState", "Connection", "ConnectionSupervisor", "ConnectionWatchdog"]
