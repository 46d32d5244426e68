"""Error taxonomy for the analysis pipeline."""

from typing import Optional


class AnalysisError(Exception):
    """Base class for errors raised by the analysis pipeline and its collaborators."""


class ConfigurationError(AnalysisError):
    """A provider credential is missing, so the provider cannot be used."""

    def __init__(self, provider: str, env_var: Optional[str] = None):
        self.provider = provider
        self.env_var = env_var
        message = f"{provider} client not initialized."
        if env_var:
            message += f" {env_var} is missing."
        super().__init__(message)


class UpstreamGenerationError(AnalysisError):
    """The text-generation provider failed or stalled while streaming."""

    def __init__(self, provider: str, step: int, detail: str):
        self.provider = provider
        self.step = step
        super().__init__(f"{provider} API Error (Step {step}): {detail}")


class PersistenceError(AnalysisError):
    """The result store could not complete a read or write."""
