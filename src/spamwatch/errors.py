"""Exception hierarchy shared by the spamwatch pipeline.

Request-level errors reject the whole request before or during fan-out.
Provider and classifier errors are scoped to one address and one dependency;
the orchestrator turns them into diagnostics or undetermined verdicts.
"""

from __future__ import annotations


class SpamwatchError(RuntimeError):
    """Base class for all spamwatch errors."""


# ---------------------------------------------------------------------------
# Request-level errors
# ---------------------------------------------------------------------------


class RequestValidationError(SpamwatchError, ValueError):
    """Raised when a request is rejected before any outbound call."""


class EmptyRequestError(RequestValidationError):
    """Raised when a request carries no addresses."""

    def __init__(self) -> None:
        super().__init__("at least one contract address is required")


class TooManyAddressesError(RequestValidationError):
    """Raised when a request exceeds the configured address limit."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"too many addresses: {count} supplied, at most {limit} allowed")
        self.count = count
        self.limit = limit


class InvalidAddressError(RequestValidationError):
    """Raised when an address is not 0x followed by 40 hex characters."""

    def __init__(self, address: object) -> None:
        super().__init__(f"invalid contract address: {address!r}")
        self.address = address


class ChainNotSupportedError(RequestValidationError):
    """Raised when a chain is unknown, disabled, or has no usable provider.

    ``reason`` is one of ``unknown``, ``disabled`` or ``no_providers``.
    """

    def __init__(self, chain_id: int | None, reason: str, message: str) -> None:
        super().__init__(message)
        self.chain_id = chain_id
        self.reason = reason


class RequestTimeoutError(SpamwatchError, TimeoutError):
    """Raised when a request exceeds its overall deadline."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"request exceeded {timeout_seconds:g}s deadline")
        self.timeout_seconds = timeout_seconds


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(SpamwatchError):
    """Failure of one provider for one address."""

    kind = "error"
    retryable = False

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.detail = message


class ProviderNotFound(ProviderError):
    """The provider has no record of the contract."""

    kind = "not_found"


class ProviderTimeout(ProviderError):
    kind = "timeout"
    retryable = True


class ProviderRateLimited(ProviderError):
    kind = "rate_limited"
    retryable = True


class ProviderUnauthorized(ProviderError):
    """Credentials were rejected; a configuration problem, never retried."""

    kind = "unauthorized"


class ProviderUnavailable(ProviderError):
    kind = "unavailable"
    retryable = True


# ---------------------------------------------------------------------------
# Classifier errors
# ---------------------------------------------------------------------------


class ClassifierError(SpamwatchError):
    """Failure to obtain a verdict for one address."""

    kind = "error"
    retryable = False


class ClassifierUnauthorized(ClassifierError):
    kind = "unauthorized"


class ClassifierRateLimited(ClassifierError):
    kind = "rate_limited"
    retryable = True


class ClassifierTimeout(ClassifierError):
    kind = "timeout"
    retryable = True


class ClassifierUnavailable(ClassifierError):
    kind = "unavailable"
    retryable = True


class ClassifierPromptError(ClassifierError):
    """The prompt template could not be rendered for this contract."""

    kind = "prompt_error"


class ClassifierParseFailure(ClassifierError):
    """The model answered, but not with a recognisable verdict."""

    kind = "parse_failure"

    def __init__(self, raw_output: str) -> None:
        super().__init__(f"could not parse verdict from model output: {raw_output!r}")
        self.raw_output = raw_output


class RegistryError(SpamwatchError, ValueError):
    """Raised when a model or prompt registry file is missing or malformed."""


__all__ = [
    "SpamwatchError",
    "RequestValidationError",
    "EmptyRequestError",
    "TooManyAddressesError",
    "InvalidAddressError",
    "ChainNotSupportedError",
    "RequestTimeoutError",
    "ProviderError",
    "ProviderNotFound",
    "ProviderTimeout",
    "ProviderRateLimited",
    "ProviderUnauthorized",
    "ProviderUnavailable",
    "ClassifierError",
    "ClassifierUnauthorized",
    "ClassifierRateLimited",
    "ClassifierTimeout",
    "ClassifierUnavailable",
    "ClassifierParseFailure",
    "ClassifierPromptError",
    "RegistryError",
]
