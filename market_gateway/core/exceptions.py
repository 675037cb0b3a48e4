"""
Error taxonomy for the gateway.
Provider-side failures advance the fallback chain; admission refusals are kept distinct.
"""

from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""


class ProviderError(GatewayError):
    """Network, HTTP or payload failure reported by a provider call."""

    def __init__(self, message: str, provider: str, symbol: Optional[str] = None):
        self.message = message
        self.provider = provider
        self.symbol = symbol
        super().__init__(self.message)


class RateLimitError(ProviderError):
    """Exception raised when provider rate limit is exceeded."""
    pass


class AuthenticationError(ProviderError):
    """Exception raised when provider authentication fails."""
    pass


class DataNotFoundError(ProviderError):
    """Exception raised when requested data is not found."""
    pass


class ProviderExhausted(ProviderError):
    """The scheduler gave up on an item after its retry budget was spent."""

    def __init__(self, message: str, provider: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message, provider)
        self.attempts = attempts
        self.last_error = last_error


class ProviderDenied(GatewayError):
    """Admission was refused: unknown provider, full queue, queue wait exceeded or scheduler stopped."""

    def __init__(self, message: str, provider: str):
        self.message = message
        self.provider = provider
        super().__init__(message)


class ConfigurationMissing(GatewayError):
    """A provider adapter is missing a required credential."""

    def __init__(self, provider: str, setting: str):
        self.provider = provider
        self.setting = setting
        super().__init__(f"{provider} requires {setting} to be configured")
