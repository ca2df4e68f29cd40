from __future__ import annotations

"""Error taxonomy shared by the search and generation stages."""


class PipelineError(RuntimeError):
    """Base class for pipeline failures."""
    pass


class QueryValidationError(PipelineError):
    """Raised when a query is missing or invalid; no stream is opened."""
    pass


class UpstreamError(PipelineError):
    """Raised when the document store or a model provider fails."""
    pass


class StoreError(UpstreamError):
    """Raised when the meeting store query fails."""
    pass


class ProviderError(UpstreamError):
    """Raised when a model provider fails before or during streaming."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderExhausted(PipelineError):
    """Raised when no model provider is configured."""
    pass


class FrameDecodeError(PipelineError):
    """Raised for a malformed frame on the wire."""
    pass
