"""Error taxonomy for team9link."""

AUTH_HINT = (
    "Check that TEAM9_TOKEN is a valid bot access token (t9bot_...). "
    "The token may have been revoked or the bot deleted."
)


class Team9Error(Exception):
    """Base class for all team9link errors."""


class ConfigurationError(Team9Error):
    """Missing or invalid account configuration (token, URL). Not retried."""


class AuthenticationError(Team9Error):
    """The server rejected the bot credentials."""

    def __init__(self, message: str, status_code: int | None = None, hint: str = AUTH_HINT):
        super().__init__(message)
        self.status_code = status_code
        self.hint = hint

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}. {self.hint}" if self.hint else base


class TransportError(Team9Error):
    """Realtime socket could not be established or was lost."""


class ApiError(Team9Error):
    """Non-auth REST failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DeliveryError(Team9Error):
    """A reply could not be sent or its media could not be uploaded."""


class DiscoveryError(Team9Error):
    """Channel listing or metadata lookup failed."""


class AccountStoppedError(TransportError):
    """The account was stopped while its connection was being built."""
