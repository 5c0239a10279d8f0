"""Exceptions raised while building a chat page."""


class SiteChatError(Exception):
    """Base class for every error raised by this app."""


class MissingRouteSegmentsError(SiteChatError, ValueError):
    """The page was requested without any URL segments to reconstruct."""

    def __init__(self, message: str = "missing route segments"):
        super().__init__(message)


class MembershipStoreError(SiteChatError):
    """Redis could not answer a membership (or lock) request."""


class IngestionError(SiteChatError):
    """A source could not be fetched, parsed or stored as context."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"could not index {source!r}: {reason}")


class HistoryUnavailableError(SiteChatError):
    """The conversation history store could not be read or written."""
