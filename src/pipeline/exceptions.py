"""Exception hierarchy for the analysis pipeline.

Every failure the orchestrator can meet has its own class with typed
attributes, so the API layer and the refund logic can branch on the class
instead of parsing messages.
"""

from decimal import Decimal


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    pass


class ConfigurationError(PipelineError):
    """Raised when a required setting is missing for the requested operation."""

    def __init__(self, setting: str) -> None:
        self.setting = setting
        super().__init__(f"Server missing {setting}")


class AuthenticationError(PipelineError):
    """Raised when the bearer credential is missing or invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class InvalidRequestError(PipelineError):
    """Raised for malformed input (bad URL, missing transcript)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InsufficientCreditsError(PipelineError):
    """Raised when the balance does not cover the charge."""

    def __init__(self, balance: Decimal, required: Decimal) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class LedgerError(PipelineError):
    """Raised when the credit store rejects or fails an operation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Ledger error: {message}")


class AcquisitionError(PipelineError):
    """Base class for transcript acquisition failures."""

    retryable = False

    def __init__(self, message: str, url: str | None = None) -> None:
        self.message = message
        self.url = url
        super().__init__(message)


class TranscriptUnavailableError(AcquisitionError):
    """The video has no transcript or captions. Shown to the user as-is."""

    retryable = False


class TranscriptProviderError(AcquisitionError):
    """The scraping provider failed (HTTP error, failed run, timeout)."""

    retryable = True


class GenerationError(PipelineError):
    """Raised when an LLM stage fails."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        super().__init__(f"Generation failed in {stage} stage: {message}")


class PersistenceError(PipelineError):
    """Raised when a generated result cannot be saved."""

    def __init__(self, record_id: str, message: str) -> None:
        self.record_id = record_id
        self.message = message
        super().__init__(f"Failed to persist {record_id}: {message}")


class TransportError(PipelineError):
    """Raised when an event cannot be written to the client stream.

    ``EventStream`` raises it for writes after the terminal event and for
    metadata sent after content. A client disconnect does not raise it: the
    disconnect reaches the stream generator as ``GeneratorExit`` or
    ``asyncio.CancelledError``, which the orchestrator logs as
    ``client_disconnected`` and re-raises, leaving the row to the sweep.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Transport error: {message}")
