"""
The negotiation pipeline shared by every Accept-* header.

A ``Negotiator`` runs a fixed sequence of steps: validate the server's
availability map, rank it, short-circuit on an absent header, parse and
coalesce the header terms, match candidates, drop rejected ones and pick
the best survivor. The per-header differences live in a
``NegotiationStrategy``.
"""
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from fractions import Fraction
from typing import Any, NamedTuple

import structlog

from accept_negotiation.exceptions import InvalidAvailabilityError, NotAcceptableError
from accept_negotiation.headers import MAX_QUALITY, Term, parse_terms

logger = structlog.get_logger(__name__)

AvailabilityMap = Mapping[str, Any]


def keep_case(value: str) -> str:
    return value


def no_coalesce(terms: tuple[Term, ...]) -> tuple[Term, ...]:
    return terms


def find_exact_term(terms: Sequence[Term], candidate: str) -> Term | None:
    """Returns the first non-wildcard term whose value equals ``candidate``."""
    for term in terms:
        if not term.is_wildcard and term.value == candidate:
            return term
    return None


def next_position(terms: Sequence[Term]) -> int:
    """The position a synthesized term appended to ``terms`` should take."""
    return max((term.position for term in terms), default=-1) + 1


@dataclass(frozen=True)
class NegotiationStrategy:
    """
    The header-specific hooks plugged into the negotiation pipeline.

    ``normalize`` is applied to every parsed term value and every candidate
    identifier before comparison. ``coalesce`` may append implicit terms to
    the parsed header. ``find_term`` picks the term that applies to a
    normalized candidate, or None to fall back to the wildcard.

    ``empty_header`` is the header value to negotiate when the header is
    present but empty. When None, an empty header is treated like an
    absent one and the server's top preference wins.
    """

    header_name: str
    noun: str
    normalize: Callable[[str], str] = keep_case
    coalesce: Callable[[tuple[Term, ...]], tuple[Term, ...]] = no_coalesce
    find_term: Callable[[Sequence[Term], str], Term | None] = find_exact_term
    empty_header: str | None = None


class Candidate(NamedTuple):
    """
    A matched candidate. ``has_explicit_quality`` comes from the matched
    term and is diagnostic only: ordering uses quality, then position.
    """

    identifier: str
    quality: Fraction
    position: int
    has_explicit_quality: bool


def to_quality(weight: Any) -> Fraction:
    """
    Converts a server-side weight to an exact Fraction.
    Floats go through their shortest repr so 0.2 becomes exactly 1/5.
    """
    if isinstance(weight, bool):
        raise TypeError("booleans are not quality values")
    if isinstance(weight, float):
        return Fraction(repr(weight))
    if isinstance(weight, str):
        return Fraction(weight.strip())
    if isinstance(weight, (int, Decimal, Fraction)):
        return Fraction(weight)
    raise TypeError(f"unsupported weight type {type(weight).__name__}")


def validate_availability(available: AvailabilityMap) -> dict[str, Fraction]:
    """
    Checks every identifier and weight in ``available``.
    Returns a new dict mapping each identifier to its weight as a Fraction.
    """
    if not available:
        raise InvalidAvailabilityError("Availability map must not be empty")

    validated = {}
    for identifier, weight in available.items():
        if not isinstance(identifier, str) or not identifier.strip():
            raise InvalidAvailabilityError(
                f"Invalid available identifier {identifier!r}", identifier, weight
            )
        try:
            quality = to_quality(weight)
        except (TypeError, ValueError, ZeroDivisionError, OverflowError) as exc:
            raise InvalidAvailabilityError(
                f"Invalid quality value {weight!r} for {identifier!r}", identifier, weight
            ) from exc
        if not 0 < quality <= MAX_QUALITY:
            raise InvalidAvailabilityError(
                f"Quality value {weight!r} for {identifier!r} is outside (0, 1]",
                identifier,
                weight,
            )
        validated[identifier] = quality
    return validated


def rank_available(available: AvailabilityMap) -> list[tuple[str, Fraction]]:
    """
    Validates ``available`` and orders it from highest to lowest weight.
    Equal weights keep their insertion order.
    """
    validated = validate_availability(available)
    return sorted(validated.items(), key=lambda item: -item[1])


class Negotiator:
    """Selects the best available identifier for one kind of Accept-* header."""

    def __init__(self, strategy: NegotiationStrategy):
        self.strategy = strategy

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.strategy.header_name!r})"

    def negotiate(self, header: str | None, available: AvailabilityMap) -> str:
        """
        Returns the key of ``available`` that best satisfies ``header``.

        Raises InvalidAvailabilityError before looking at the header if
        ``available`` is unusable, MalformedHeaderError if the header has a
        bad q-factor, and NotAcceptableError if nothing is acceptable.
        """
        ranked = rank_available(available)

        # An absent Accept-* header means anything is acceptable
        if header is None:
            return ranked[0][0]
        value = header
        if not header.strip():
            if self.strategy.empty_header is None:
                return ranked[0][0]
            value = self.strategy.empty_header

        # Parse the raw text so a MalformedHeaderError carries what the client sent
        normalize = self.strategy.normalize
        terms = tuple(
            replace(term, value=normalize(term.value)) for term in parse_terms(value)
        )
        terms = self.strategy.coalesce(terms)

        candidates = self._match(ranked, terms)
        candidates = [c for c in candidates if c.quality > 0]
        candidates.sort(key=lambda c: (-c.quality, c.position))

        if not candidates:
            logger.debug(
                "not_acceptable",
                header_name=self.strategy.header_name,
                header=header,
                available=[identifier for identifier, _ in ranked],
            )
            raise NotAcceptableError(
                self.strategy.header_name,
                header,
                tuple(identifier for identifier, _ in ranked),
                self.strategy.noun,
            )

        best = candidates[0]
        logger.debug(
            "negotiated",
            header_name=self.strategy.header_name,
            header=header,
            selected=best.identifier,
            quality=str(best.quality),
        )
        return best.identifier

    def _match(
        self, ranked: list[tuple[str, Fraction]], terms: tuple[Term, ...]
    ) -> list[Candidate]:
        wildcard = next((term for term in terms if term.is_wildcard), None)

        candidates = []
        seen = set()
        for identifier, weight in ranked:
            key = self.strategy.normalize(identifier)
            # Keys that fold together: the higher-ranked one wins
            if key in seen:
                continue
            seen.add(key)

            term = self.strategy.find_term(terms, key) or wildcard
            if term is None:
                continue
            candidates.append(
                Candidate(
                    identifier,
                    weight * term.quality,
                    term.position,
                    term.has_explicit_quality,
                )
            )
        return candidates
