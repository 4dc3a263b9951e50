"""
HTTP Accept-* header parsing utilities.
"""
import re
from dataclasses import dataclass
from fractions import Fraction
from functools import lru_cache

from accept_negotiation.exceptions import MalformedHeaderError

# '*' means any value not mentioned elsewhere in the header
WILDCARD = "*"

MIN_QUALITY = Fraction(0)
MAX_QUALITY = Fraction(1)

# Optionally signed decimal: "1", "0.5", ".5", "1."
_QUALITY_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")


@dataclass(frozen=True)
class Term:
    """A single preference declared in an Accept-* header."""

    position: int
    value: str
    quality: Fraction = MAX_QUALITY
    has_explicit_quality: bool = False

    @property
    def is_wildcard(self) -> bool:
        return self.value == WILDCARD


def parse_quality(raw: str) -> Fraction:
    """
    Parses a q-factor string into an exact Fraction clamped to [0, 1].
    Raises ValueError if the string is not a decimal number.
    """
    raw = raw.strip()
    if not _QUALITY_RE.match(raw):
        raise ValueError(f"invalid quality value {raw!r}")

    quality = Fraction(raw)
    if quality < MIN_QUALITY:
        return MIN_QUALITY
    if quality > MAX_QUALITY:
        return MAX_QUALITY
    return quality


def parse_part(part: str, position: int, header: str = "") -> Term | None:
    """
    Parses a single part of an Accept-* header (e.g., "utf-8;q=0.8").
    Returns a Term, or None if the part is empty.
    """
    part = part.strip()
    if not part:
        return None

    components = part.split(";")
    value = components[0].strip()
    if not value:
        raise MalformedHeaderError(header, part, "missing value before parameters")

    # Find the "q=" parameter, if it exists. Other parameters are ignored.
    for param in components[1:]:
        name, sep, raw_q = param.partition("=")
        if name.strip().lower() != "q":
            continue
        if not sep:
            raise MalformedHeaderError(header, part, "q parameter without a value")
        try:
            quality = parse_quality(raw_q)
        except ValueError as exc:
            raise MalformedHeaderError(header, part, str(exc)) from exc
        return Term(position, value, quality, True)

    return Term(position, value)


@lru_cache(maxsize=128)
def parse_terms(header: str) -> tuple[Term, ...]:
    """
    Parses a raw Accept-* header into terms in declaration order.

    Empty list entries are skipped but still count towards ``position`` so
    each term's position is its index in the original header.

    Results are LRU-cached; the returned tuple and its terms are immutable.
    """
    if not header or not header.strip():
        return ()

    terms = []
    for position, part_str in enumerate(header.split(",")):
        term = parse_part(part_str, position, header)
        if term is not None:
            terms.append(term)
    return tuple(terms)
