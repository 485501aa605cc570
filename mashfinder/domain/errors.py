from typing import Optional


class MashfinderError(Exception):
    """Base class for all mashfinder errors."""


class ConfigurationMissing(MashfinderError):
    """A required credential or setting is not configured. Triggers fallback data."""

    def __init__(self, setting: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{setting} is not configured")
        self.setting = setting


class ProviderError(MashfinderError):
    """Failure talking to an external provider."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


class ProviderUnauthorized(ProviderError):
    """Provider rejected our credentials (HTTP 401/403)."""


class ProviderRateLimited(ProviderError):
    """Provider quota or rate limit hit. Includes suggested wait time in milliseconds."""

    def __init__(self, provider: str, retry_after_ms: int = 1000,
                 message: str = "Rate limited", status: Optional[int] = 429) -> None:
        super().__init__(provider, message, status)
        self.retry_after_ms = retry_after_ms


class ProviderUnreachable(ProviderError):
    """Network-level failure, timeout or provider-side 5xx."""


class InvalidRequest(MashfinderError):
    """Client supplied a missing or malformed parameter."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
