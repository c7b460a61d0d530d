"""
Exception types raised by the bulk pipeline.

Scene- and item-level handlers catch these (and anything else) and store
the message on the failed record; routes map them to HTTP status codes.
"""


class GenerationError(RuntimeError):
    """A capability finished without producing an artifact."""


class QualityGateError(RuntimeError):
    """The quality gate exhausted its attempts on an unusable image."""


class UnsupportedProviderError(ValueError):
    """Requested animation provider is not registered."""


class NotFoundError(LookupError):
    """A batch, item or scene does not exist."""


class VersionNotFoundError(NotFoundError):
    """A version id does not belong to the given scene and kind."""


class PipelineCancelled(Exception):
    """The run's cancellation signal was set."""
