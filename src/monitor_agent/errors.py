"""Exception types shared across the delivery pipeline."""

from __future__ import annotations


class MonitorAgentError(RuntimeError):
    """Base class for every error raised by the agent itself."""


class ConfigurationError(MonitorAgentError):
    """Raised when required settings are missing or malformed."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))


class AIServiceError(MonitorAgentError):
    """Raised when the AI service cannot be reached or keeps failing."""


class AIResponseError(AIServiceError):
    """Raised when the AI service answers with something we cannot parse."""


class UnsafePathError(MonitorAgentError):
    """Raised when a generated file path resolves outside the working tree."""


class ConcurrentUpdateError(MonitorAgentError):
    """Raised when a compare-and-set status update loses to another writer."""


class PlanOrderError(MonitorAgentError):
    """Raised when strict plan ordering is enabled and a plan violates it."""
