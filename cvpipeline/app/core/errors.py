class CVPipelineError(Exception):
    """Base error for all pipeline exceptions."""


class ExtractionFatalError(CVPipelineError):
    """Raised when no usable text is given or phase 1 cannot recover a name."""


class ProviderError(CVPipelineError):
    """Raised when the model provider fails in a way retrying will not fix."""


class ProviderUnavailableError(ProviderError):
    """Raised when transient provider failures outlast the retry budget."""


class CapabilityError(ProviderError):
    """Raised when the requested model is unsupported and the chain is exhausted."""


class ParseError(CVPipelineError):
    """Raised when every repair strategy fails to parse a model reply."""

    def __init__(self, message: str, strategies: list[str] | None = None) -> None:
        super().__init__(message)
        self.strategies = strategies or []


class QueueStateError(CVPipelineError):
    """Raised when a queue operation does not apply to the job's current state."""


class JobNotFoundError(QueueStateError):
    """Raised when a job id is unknown."""


class SessionNotFoundError(CVPipelineError):
    """Raised when a processing session has expired or been deleted."""
