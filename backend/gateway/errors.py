"""
Gateway Errors
Exception hierarchy shared by the orchestrator and every provider client.
"""
from dataclasses import dataclass
from typing import List, Optional


class GatewayError(Exception):
    """Root of every error raised by the generation gateway."""


class ConfigurationError(GatewayError):
    """Provider configuration is invalid (unknown provider, bad numbers...)."""


class GatewayTimeoutError(GatewayError):
    """The caller's overall deadline expired before any provider succeeded."""


class ProviderError(GatewayError):
    """A single provider attempt failed."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"[{provider}] {message}")


class ProviderHTTPError(ProviderError):
    """Provider answered with a non-2xx status."""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        detail = f"HTTP {status_code}"
        if body:
            detail += f" - {body[:200]}"
        super().__init__(provider, detail)


class ProviderConnectionError(ProviderError):
    """Network failure or request timeout talking to the provider."""


class ProviderResponseError(ProviderError):
    """Provider answered, but the payload is malformed or fails validation."""


class ProviderJobFailedError(ProviderError):
    """A polled job reached a terminal failed/canceled state."""

    def __init__(self, provider: str, job_id: str, reason: Optional[str] = None):
        self.job_id = job_id
        self.reason = reason or "Unknown error"
        super().__init__(provider, f"job {job_id} failed: {self.reason}")


class ProviderTimeoutError(ProviderError):
    """A polled job never reached a terminal state within max attempts."""

    def __init__(self, provider: str, job_id: str, attempts: int, interval: float):
        self.job_id = job_id
        self.attempts = attempts
        self.interval = interval
        super().__init__(
            provider,
            f"job {job_id} timed out after {attempts} polls ({attempts * interval:.0f}s)",
        )


class UnsupportedInputError(ProviderError):
    """The request carries input this provider cannot consume (e.g. video)."""


class AllProvidersUnavailableError(GatewayError):
    """Every configured provider, fallbacks included, was skipped or failed."""

    def __init__(self, attempts: Optional[List["AttemptRecord"]] = None):
        self.attempts = list(attempts or [])
        super().__init__("all providers unavailable")


@dataclass(repr=False)
class AttemptRecord:
    """One line of the orchestrator's attempt log."""
    provider: str
    # "rate_limited" | "failed" | "succeeded"
    outcome: str
    error: Optional[BaseException] = None
    via_fallback: bool = False

    def __repr__(self) -> str:
        suffix = f", error={self.error!r}" if self.error else ""
        tag = " (fallback)" if self.via_fallback else ""
        return f"AttemptRecord({self.provider}{tag}: {self.outcome}{suffix})"
