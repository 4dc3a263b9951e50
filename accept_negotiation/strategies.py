"""
Strategies for the Accept-Charset, Accept-Encoding and Accept-Language headers.
"""
from collections.abc import Callable, Sequence

from accept_negotiation.headers import WILDCARD, Term
from accept_negotiation.negotiator import NegotiationStrategy, Negotiator, next_position

# rfc2616-sec14.2: ISO-8859-1 gets a quality value of 1 if not explicitly mentioned
DEFAULT_CHARSET = "iso-8859-1"

# rfc2616-sec14.3: 'identity' is always acceptable unless explicitly refused
IDENTITY_ENCODING = "identity"


def coalesce_default(default: str) -> Callable[[tuple[Term, ...]], tuple[Term, ...]]:
    """
    Builds a coalescing hook that appends an implicit ``default`` term with
    quality 1, unless the header already names ``default`` or the wildcard.
    """

    def coalesce(terms: tuple[Term, ...]) -> tuple[Term, ...]:
        if any(term.value in (default, WILDCARD) for term in terms):
            return terms
        return terms + (Term(next_position(terms), default),)

    return coalesce


def find_language_range(terms: Sequence[Term], tag: str) -> Term | None:
    """
    Returns the most specific language-range matching ``tag``.

    A range matches if it equals the tag or is a prefix of it followed by
    '-' ("en" matches "en-gb"). Equal-length ranges resolve to the first.
    """
    best = None
    for term in terms:
        if term.is_wildcard:
            continue
        if term.value == tag or tag.startswith(term.value + "-"):
            if best is None or len(term.value) > len(best.value):
                best = term
    return best


CHARSET = NegotiationStrategy(
    header_name="Accept-Charset",
    noun="charsets",
    # rfc2616-sec3.4: "HTTP character sets are identified by case-insensitive tokens."
    normalize=str.lower,
    coalesce=coalesce_default(DEFAULT_CHARSET),
)

ENCODING = NegotiationStrategy(
    header_name="Accept-Encoding",
    noun="content-codings",
    normalize=str.lower,
    coalesce=coalesce_default(IDENTITY_ENCODING),
    # rfc2616-sec14.3: an empty field-value means only "identity" is acceptable
    empty_header=IDENTITY_ENCODING,
)

LANGUAGE = NegotiationStrategy(
    header_name="Accept-Language",
    noun="languages",
    normalize=str.lower,
    find_term=find_language_range,
)

charset_negotiator = Negotiator(CHARSET)
encoding_negotiator = Negotiator(ENCODING)
language_negotiator = Negotiator(LANGUAGE)
