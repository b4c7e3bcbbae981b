"""Error taxonomy for quote fetching and insight generation.

Exception Hierarchy:
    DeepTickerError (base)
    ├── QuoteUnavailable - every quote source failed and nothing was cached
    ├── ProviderError - AI provider failures
    │   ├── ProviderUnconfigured - no usable credential for the provider
    │   ├── ProviderRequestFailed - transport, HTTP or timeout failure
    │   └── ResponseParseFailed - reply could not be coerced into an insight
    ├── UnknownProviderError - provider id not present in the registry
    └── CredentialStoreError - the secret store could not be used

Every error here is local and recoverable: callers surface it per symbol or per
request and carry on.
"""

from typing import Any


class DeepTickerError(Exception):
    """Base exception for all DeepTicker errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
        recoverable: Whether the error can be recovered from.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class QuoteUnavailable(DeepTickerError):
    """No quote could be produced for a symbol.

    Raised when the primary and secondary sources both failed and the cache
    holds no previous value, not even a stale one.

    Attributes:
        symbol: The ticker that could not be priced.
        errors: One message per source that failed.
    """

    def __init__(self, symbol: str, errors: list[str] | None = None) -> None:
        self.symbol = symbol
        self.errors = list(errors or [])
        super().__init__(
            f"No quote available for {symbol}",
            details={"symbol": symbol, "errors": self.errors},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["symbol"] = self.symbol
        return base


class ProviderError(DeepTickerError):
    """Base class for AI provider failures.

    Attributes:
        provider: Identifier of the provider involved.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.provider = provider

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["provider"] = self.provider
        return base


class ProviderUnconfigured(ProviderError):
    """The provider has no credential, or no provider could be selected."""

    def __init__(self, provider: str | None) -> None:
        name = provider or "none"
        if provider:
            message = f"No API key configured for provider '{provider}'"
        else:
            message = "No AI provider selected and the default provider has no API key"
        super().__init__(message, provider=name)


class ProviderRequestFailed(ProviderError):
    """The remote call failed before a usable reply arrived.

    Not retried automatically; the user has to ask again.

    Attributes:
        status_code: HTTP status when the server answered, else None.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            message,
            provider=provider,
            details={"status_code": status_code} if status_code is not None else None,
        )
        self.status_code = status_code


class ResponseParseFailed(ProviderError):
    """The provider replied but the text could not become an insight.

    Attributes:
        raw_text: The untouched reply, kept for diagnosis.
    """

    def __init__(self, message: str, *, provider: str, raw_text: str) -> None:
        super().__init__(message, provider=provider)
        self.raw_text = raw_text

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["raw_text"] = self.raw_text
        return base


class UnknownProviderError(DeepTickerError):
    """Raised when a provider id cannot be resolved."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown AI provider: {provider}", details={"provider": provider})
        self.provider = provider


class CredentialStoreError(DeepTickerError):
    """Raised when the secret store cannot be read or written."""
