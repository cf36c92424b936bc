"""Exceptions raised across provider calls and research runs."""

from __future__ import annotations


class ResearchError(Exception):
    """Base class for row-research failures."""


class ProviderError(ResearchError):
    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    def __init__(self, provider: str, timeout: float) -> None:
        super().__init__(provider, f"timed out after {timeout}s")
        self.timeout = timeout


class AllProvidersFailedError(ResearchError):
    """Primary and secondary both raised; the only hard failure of a research call."""

    def __init__(self, primary_error: str, secondary_error: str) -> None:
        super().__init__(
            f"All LLM providers failed. Primary: {primary_error}, Secondary: {secondary_error}"
        )
        self.primary_error = primary_error
        self.secondary_error = secondary_error


class RunAbandonedError(ResearchError):
    """Item was never started because the run was stopped."""

    def __init__(self) -> None:
        super().__init__("Research run abandoned before this item started")
