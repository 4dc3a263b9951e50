"""
Errors raised while negotiating an Accept-* header.
"""
from typing import Any


class NegotiationError(Exception):
    """Base class for every negotiation failure."""


class InvalidAvailabilityError(NegotiationError, ValueError):
    """The server-side availability map is empty or holds an invalid weight."""

    def __init__(self, message: str, identifier: Any = None, weight: Any = None):
        super().__init__(message)
        self.identifier = identifier
        self.weight = weight


class MalformedHeaderError(NegotiationError, ValueError):
    """A client-supplied header could not be parsed into terms."""

    def __init__(self, header: str, segment: str, reason: str):
        super().__init__(f"Malformed header segment {segment!r}: {reason}")
        self.header = header
        self.segment = segment
        self.reason = reason


class NotAcceptableError(NegotiationError):
    """No available candidate is acceptable to the client."""

    def __init__(self, header_name: str, header: str, available: tuple[str, ...], noun: str = "values"):
        super().__init__(
            f"No available {noun} match `{header_name}: {header}`. "
            f"Available set: [{'|'.join(available)}]"
        )
        self.header_name = header_name
        self.header = header
        self.available = available
