from __future__ import annotations


class ProviderError(Exception):
    """Base error for inference provider failures."""


class ConfigurationError(ProviderError):
    pass


class UnsupportedFeatureError(ProviderError):
    """Requested model or capability is not routed by this client."""


class TransportError(ProviderError):
    """Connection failure or timeout that outlived every retry attempt."""

    def __init__(self, message: str = "Upstream request failed.", *, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class UpstreamAPIError(ProviderError):
    def __init__(self, status_code: int | None = None, message: str = "Upstream error"):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"Upstream API error [{self.status_code}]: {self.message}"


class AuthenticationError(UpstreamAPIError):
    def __init__(self, message: str = "Upstream rejected credentials.", status_code: int | None = None):
        super().__init__(status_code, message)


class RateLimitError(UpstreamAPIError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Rate limited"):
        super().__init__(429, message)
        self.retry_after_seconds = retry_after_seconds


class DecodeError(ProviderError):
    """Upstream response did not match any known shape."""


class RequestTimeoutError(ProviderError):
    """Caller-supplied deadline exceeded."""
