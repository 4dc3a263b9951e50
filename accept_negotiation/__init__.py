"""
RFC 2616 content negotiation for Accept-Charset, Accept-Encoding and
Accept-Language headers.
"""
from accept_negotiation.exceptions import (
    InvalidAvailabilityError,
    MalformedHeaderError,
    NegotiationError,
    NotAcceptableError,
)
from accept_negotiation.headers import Term, parse_terms
from accept_negotiation.middleware import NegotiationMiddleware
from accept_negotiation.negotiator import AvailabilityMap, NegotiationStrategy, Negotiator
from accept_negotiation.strategies import (
    CHARSET,
    ENCODING,
    LANGUAGE,
    charset_negotiator,
    encoding_negotiator,
    language_negotiator,
)

__all__ = [
    "CHARSET",
    "ENCODING",
    "LANGUAGE",
    "InvalidAvailabilityError",
    "MalformedHeaderError",
    "NegotiationError",
    "NegotiationMiddleware",
    "NegotiationStrategy",
    "Negotiator",
    "NotAcceptableError",
    "Term",
    "negotiate_charset",
    "negotiate_encoding",
    "negotiate_language",
    "parse_terms",
]


def negotiate_charset(header: str | None, available: AvailabilityMap) -> str:
    """Negotiates a raw Accept-Charset header against the available charsets."""
    return charset_negotiator.negotiate(header, available)


def negotiate_encoding(header: str | None, available: AvailabilityMap) -> str:
    """Negotiates a raw Accept-Encoding header against the available content-codings."""
    return encoding_negotiator.negotiate(header, available)


def negotiate_language(header: str | None, available: AvailabilityMap) -> str:
    return language_negotiator.negotiate(header, available)
