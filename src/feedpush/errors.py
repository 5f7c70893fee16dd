"""Error taxonomy for the sync pipeline."""


class PipelineError(Exception):
    """Base class for errors that abort a sync cycle."""

    reason = "error"


class FetchError(PipelineError):
    """Raised when a feed is unreachable, times out, or answers non-2xx."""

    reason = "unreachable"


class ParseError(PipelineError):
    """Raised when a payload is neither a valid RSS nor a valid Atom feed."""

    reason = "unparseable"


class StoreError(PipelineError):
    """Raised when the database is unavailable or rejects a write."""

    reason = "store"


class DeliveryError(Exception):
    """Raised when one session cannot receive a notification.

    Never escapes the dispatcher.
    """
