"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DmPolicy = Literal["pairing", "allowlist", "open", "disabled"]


class CredentialsConfig(BaseModel):
    """Bot credentials."""
    token: str = ""  # Bot access token (t9bot_...)


class DmConfig(BaseModel):
    """Direct-message access policy."""

    policy: DmPolicy | None = None
    allow_from: list[str] = Field(default_factory=list)

    @field_validator("policy", mode="before")
    @classmethod
    def normalize_policy(cls, value: str | None) -> str | None:
        if isinstance(value, str):
            normalized = value.strip().lower()
            return normalized or None
        return value


class ChannelsAllowConfig(BaseModel):
    """Channel allowlist. Empty means every joined channel."""
    allowlist: list[str] = Field(default_factory=list)


class GroupConfig(BaseModel):
    """Per-channel group settings, keyed by channel id or "*"."""

    model_config = ConfigDict(populate_by_name=True)

    require_mention: bool | None = Field(default=None, alias="requireMention")


class AccountConfig(BaseModel):
    """One bot account under team9.accounts."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    enabled: bool | None = None
    base_url: str = Field(default="", alias="baseUrl")
    ws_url: str = Field(default="", alias="wsUrl")
    credentials: CredentialsConfig | None = None
    dm: DmConfig | None = None
    channels: ChannelsAllowConfig | None = None
    groups: dict[str, GroupConfig] = Field(default_factory=dict)


class DebounceConfig(BaseModel):
    """Inbound debounce window."""
    inbound_ms: int = Field(default=1500, ge=0, le=60_000)


class WatchdogConfig(BaseModel):
    """Connection health watchdog."""
    interval_s: float = Field(default=60.0, gt=0)
    failure_threshold: int = Field(default=3, ge=1, le=100)
    idle_timeout_s: float = Field(default=90.0, gt=0)


class TransportConfig(BaseModel):
    """Realtime socket and REST client tuning."""
    reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_s: float = Field(default=1.0, ge=0)
    reconnect_delay_max_s: float = Field(default=5.0, ge=0)
    connect_timeout_s: float = Field(default=10.0, gt=0)
    heartbeat_interval_s: float = Field(default=30.0, gt=0)
    request_timeout_s: float = Field(default=30.0, gt=0)
    event_queue_size: int = Field(default=1000, ge=1)

    @model_validator(mode="after")
    def validate_backoff(self) -> "TransportConfig":
        if self.reconnect_delay_max_s < self.reconnect_delay_s:
            raise ValueError("transport.reconnectDelayMaxS must be >= reconnectDelayS.")
        return self


class MentionsConfig(BaseModel):
    """Global mention regex patterns used when an agent has none."""
    patterns: list[str] = Field(default_factory=list)


DEFAULT_CONTROL_COMMANDS = [
    "/new",
    "/reset",
    "/status",
    "/stop",
    "/cancel",
    "/help",
    "/think",
    "/model",
    "/compact",
]


class CommandsConfig(BaseModel):
    """Text control commands."""
    text: bool = True  # Allow text commands to bypass mention gating
    control: list[str] = Field(default_factory=lambda: list(DEFAULT_CONTROL_COMMANDS))


class RoutingRule(BaseModel):
    """Deterministic top-down routing rule binding peers to a fixed agent."""

    model_config = ConfigDict(populate_by_name=True)

    agent: str
    account_id: str | list[str] | None = Field(default=None, alias="accountId")
    channel_id: str | list[str] | None = Field(default=None, alias="channelId")
    sender_id: str | list[str] | None = Field(default=None, alias="senderId")
    is_group: bool | None = Field(default=None, alias="isGroup")

    @field_validator("agent")
    @classmethod
    def require_agent(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("routing rules must include a non-empty agent id.")
        return value


class RoutingConfig(BaseModel):
    """Routing configuration."""
    rules: list[RoutingRule] = Field(default_factory=list)


class DeliveryConfig(BaseModel):
    """Reply delivery settings."""
    text_chunk_limit: int = Field(default=4000, ge=100)
    typing_interval_s: float = Field(default=4.0, gt=0)
    media_max_bytes: int = Field(default=5 * 1024 * 1024, ge=1024)
    media_dir: str = "~/.team9link/media"


class Team9Config(BaseModel):
    """Team9 channel configuration (root account plus named accounts)."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    name: str | None = None
    base_url: str = Field(default="", alias="baseUrl")
    ws_url: str = Field(default="", alias="wsUrl")
    credentials: CredentialsConfig | None = None
    dm: DmConfig = Field(default_factory=DmConfig)
    channels: ChannelsAllowConfig = Field(default_factory=ChannelsAllowConfig)
    groups: dict[str, GroupConfig] = Field(default_factory=dict)
    accounts: dict[str, AccountConfig] = Field(default_factory=dict)
    debounce: DebounceConfig = Field(default_factory=DebounceConfig)
    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    mentions: MentionsConfig = Field(default_factory=MentionsConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)


class AgentConfig(BaseModel):
    """Per-agent identity used for mention detection."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    mention_patterns: list[str] | None = Field(default=None, alias="mentionPatterns")


class Config(BaseSettings):
    """Root configuration for team9link."""

    model_config = SettingsConfigDict(
        env_prefix="TEAM9LINK_",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    team9: Team9Config = Field(default_factory=Team9Config)
    agents: dict[str, AgentConfig] = Field(default_factory=dict)
    runtime: str = ""  # "module:attribute" of the AgentRuntime to load

    @property
    def media_path(self) -> Path:
        """Get expanded inbound media directory."""
        return Path(self.team9.delivery.media_dir).expanduser()
