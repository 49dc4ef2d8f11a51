from __future__ import annotations


class BridgeError(Exception):
    """Base error for everything raised by the bridge."""


class ConfigurationError(BridgeError):
    pass


class ValidationError(BridgeError):
    """Caller supplied something the bridge cannot act on."""


class UnknownModelError(ValidationError):
    def __init__(self, model: str, message: str | None = None):
        super().__init__(message or f'Model "{model}" not found in registry.')
        self.model = model


class UnsupportedProviderError(ValidationError):
    def __init__(self, provider: str):
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider


class InvalidToolArgumentsError(ValidationError):
    pass


class UnknownToolError(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ProviderError(BridgeError):
    """Base error for upstream provider failures.

    Never escapes an adapter: the message becomes the `error` field of the
    normalized response.
    """


class AuthenticationError(ProviderError):
    pass


class RateLimitError(ProviderError):
    def __init__(
        self,
        retry_after_seconds: int | None = None,
        message: str = "Rate limit exceeded - please try again later",
    ):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class PaymentRequiredError(ProviderError):
    pass


class BadRequestError(ProviderError):
    pass


class UpstreamHTTPError(ProviderError):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class UpstreamTransportError(ProviderError):
    """No HTTP response at all (DNS, connect, reset, timeout)."""


class UpstreamProtocolError(ProviderError):
    """Unexpected upstream response shape / contract mismatch."""


class StorageError(BridgeError):
    pass


class JobStoreError(StorageError):
    pass


class PreferencesError(StorageError):
    pass


class PromptLogError(StorageError):
    pass
