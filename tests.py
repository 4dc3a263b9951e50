"""Tests for Accept-* header parsing, negotiation and the ASGI middleware."""

import functools
from decimal import Decimal
from fractions import Fraction

import pytest

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from accept_negotiation import (
    InvalidAvailabilityError,
    MalformedHeaderError,
    NegotiationError,
    NegotiationMiddleware,
    NegotiationStrategy,
    Negotiator,
    NotAcceptableError,
    Term,
    negotiate_charset,
    negotiate_encoding,
    negotiate_language,
    parse_terms,
)
from accept_negotiation.headers import parse_quality
from accept_negotiation.negotiator import rank_available


@pytest.fixture
def test_client_factory(anyio_backend_name, anyio_backend_options):
    return functools.partial(
        TestClient,
        backend=anyio_backend_name,
        backend_options=anyio_backend_options,
    )


# --- Header parsing ---


def test_parse_terms_keeps_declaration_order():
    terms = parse_terms("utf-8, iso-8859-5;q=0.5, *;q=0.1")
    assert terms == (
        Term(0, "utf-8", Fraction(1), False),
        Term(1, "iso-8859-5", Fraction(1, 2), True),
        Term(2, "*", Fraction(1, 10), True),
    )
    assert terms[2].is_wildcard
    assert not terms[0].is_wildcard


@pytest.mark.parametrize("header", ["", "   ", ",", " , ,"])
def test_parse_terms_empty(header):
    assert parse_terms(header) == ()


def test_parse_terms_empty_segments_keep_positions():
    terms = parse_terms("a,, b")
    assert [(t.position, t.value) for t in terms] == [(0, "a"), (2, "b")]


def test_parse_terms_is_memoized():
    assert parse_terms("utf-8;q=0.7") is parse_terms("utf-8;q=0.7")


@pytest.mark.parametrize(
    "header, expected_quality",
    [
        ("a;q=0.5", Fraction(1, 2)),
        ("a;Q=0.5", Fraction(1, 2)),
        ("a ; q = 0.25", Fraction(1, 4)),
        ("a;q=1", Fraction(1)),
        ("a;q=.5", Fraction(1, 2)),
        ("a;q=1.", Fraction(1)),
        ("a;q=0.333", Fraction(333, 1000)),
        # Out of range values are clamped
        ("a;q=1.5", Fraction(1)),
        ("a;q=-0.5", Fraction(0)),
        # Parameters other than q are ignored
        ("a;level=1;q=0.3", Fraction(3, 10)),
        ("a;level=1", Fraction(1)),
    ],
)
def test_parse_terms_quality(header, expected_quality):
    (term,) = parse_terms(header)
    assert term.value == "a"
    assert term.quality == expected_quality


def test_parse_terms_explicit_quality_flag():
    default, explicit = parse_terms("a, b;q=1")
    assert default.quality == explicit.quality == 1
    assert not default.has_explicit_quality
    assert explicit.has_explicit_quality


@pytest.mark.parametrize(
    "header",
    ["a;q=abc", "a;q=", "a;q", "a;Q ;level=1", "a;q=1e-3", "a;q=0.5.1", "a;q=0x1", ";q=0.5", "a, ;q=1"],
)
def test_parse_terms_malformed(header):
    with pytest.raises(MalformedHeaderError) as exc_info:
        parse_terms(header)
    assert exc_info.value.header == header
    assert isinstance(exc_info.value, ValueError)


def test_parse_quality_rejects_garbage():
    with pytest.raises(ValueError):
        parse_quality("high")


# --- Charset negotiation ---


@pytest.mark.parametrize(
    "accept_charset, available, expected_charset",
    [
        # 1. Wildcard gives unlisted charsets a reduced quality
        ("utf-8, *;q=0.2", {"utf-8": 1, "iso-8859-5": 0.5, "unicode-1-1": 0.2}, "utf-8"),
        # 2. ISO-8859-1 is implicitly acceptable when neither it nor * is listed
        ("utf-8;q=0.5", {"iso-8859-1": 1}, "iso-8859-1"),
        ("utf-8;q=0.5", {"utf-8": 1, "iso-8859-1": 1}, "iso-8859-1"),
        # 3. Explicitly refused ISO-8859-1
        ("iso-8859-1;q=0, utf-8;q=0.1", {"iso-8859-1": 1, "utf-8": 0.1}, "utf-8"),
        # 4. A wildcard disables the implicit ISO-8859-1 term
        ("utf-8;q=0.5, *;q=0", {"iso-8859-1": 1, "utf-8": 0.5}, "utf-8"),
        # 5. Equal negotiated quality: the earlier header term wins
        ("iso-8859-5, utf-8", {"utf-8": 1, "iso-8859-5": 1}, "iso-8859-5"),
        ("utf-8, iso-8859-5", {"iso-8859-5": 1, "utf-8": 1}, "utf-8"),
        # 6. Server weight breaks wildcard ties
        ("*", {"a": 0.5, "b": 1}, "b"),
        ("*", {"a": 1, "b": 1}, "a"),
        # 7. Header quality times server weight
        ("utf-8;q=0.4, iso-8859-5;q=0.9", {"utf-8": 1, "iso-8859-5": 0.5}, "iso-8859-5"),
        ("utf-8;q=0.6, iso-8859-5;q=0.9", {"utf-8": 1, "iso-8859-5": 0.5}, "utf-8"),
        # 8. Exact arithmetic: 0.2 * 0.3 ties with 0.6 * 0.1
        ("a;q=0.2, b;q=0.6", {"a": 0.3, "b": 0.1}, "a"),
        ("b;q=0.6, a;q=0.2", {"a": 0.3, "b": 0.1}, "b"),
        # 9. Specific term overrides the wildcard
        ("utf-8;q=0.1, *", {"utf-8": 1, "koi8-r": 0.5}, "koi8-r"),
    ],
)
def test_negotiate_charset(accept_charset, available, expected_charset):
    assert negotiate_charset(accept_charset, available) == expected_charset


@pytest.mark.parametrize("header", [None, "", "   "])
def test_empty_header_returns_top_server_preference(header):
    assert negotiate_charset(header, {"a": 0.5, "b": 1, "c": 1}) == "b"
    assert negotiate_charset(header, {"a": 1, "b": 1}) == "a"


@pytest.mark.parametrize("header", ["UTF-8", "utf-8", "Utf-8"])
def test_charset_is_case_insensitive(header):
    assert negotiate_charset(header, {"utf-8": 1, "iso-8859-5": 1}) == "utf-8"


@pytest.mark.parametrize(
    "accept_charset, expected_charset",
    [
        ("koi8-r;q=1, utf-8", "koi8-r"),
        ("utf-8, koi8-r;q=1", "utf-8"),
    ],
)
def test_explicit_quality_does_not_break_ties(accept_charset, expected_charset):
    assert negotiate_charset(accept_charset, {"utf-8": 1, "koi8-r": 1}) == expected_charset


def test_charset_returns_original_key():
    assert negotiate_charset("utf-8", {"UTF-8": 1}) == "UTF-8"
    assert negotiate_charset("", {"UTF-8": 1}) == "UTF-8"


def test_charset_keys_folding_together_prefer_higher_rank():
    assert negotiate_charset("utf-8", {"utf-8": 0.5, "UTF-8": 1}) == "UTF-8"


def test_negotiate_is_idempotent():
    header = "utf-8;q=0.7, iso-8859-5;q=0.7, *;q=0.1"
    available = {"iso-8859-5": 1, "utf-8": 1, "koi8-r": 1}
    first = negotiate_charset(header, available)
    assert negotiate_charset(header, available) == first == "utf-8"
    assert available == {"iso-8859-5": 1, "utf-8": 1, "koi8-r": 1}


@pytest.mark.parametrize(
    "accept_charset, available",
    [
        ("utf-8;q=0, iso-8859-1;q=0", {"utf-8": 1, "iso-8859-1": 1}),
        ("utf-8", {"iso-8859-5": 1}),
        ("utf-8, *;q=0", {"iso-8859-5": 1, "iso-8859-1": 1}),
    ],
)
def test_charset_not_acceptable(accept_charset, available):
    with pytest.raises(NotAcceptableError):
        negotiate_charset(accept_charset, available)


def test_not_acceptable_message():
    with pytest.raises(NotAcceptableError) as exc_info:
        negotiate_charset("utf-8", {"iso-8859-5": 0.5, "koi8-r": 1})

    exc = exc_info.value
    assert str(exc) == (
        "No available charsets match `Accept-Charset: utf-8`. "
        "Available set: [koi8-r|iso-8859-5]"
    )
    assert exc.header_name == "Accept-Charset"
    assert exc.header == "utf-8"
    assert exc.available == ("koi8-r", "iso-8859-5")
    assert isinstance(exc, NegotiationError)


def test_malformed_header_is_reported():
    with pytest.raises(MalformedHeaderError):
        negotiate_charset("utf-8;q=abc", {"utf-8": 1})


def test_malformed_header_keeps_client_text():
    with pytest.raises(MalformedHeaderError) as exc_info:
        negotiate_charset("UTF-8, KOI8-R;Q=High", {"utf-8": 1})
    assert exc_info.value.header == "UTF-8, KOI8-R;Q=High"
    assert exc_info.value.segment == "KOI8-R;Q=High"


# --- Availability validation ---


@pytest.mark.parametrize(
    "available",
    [
        {},
        {"utf-8": 0},
        {"utf-8": 1.5},
        {"utf-8": -0.5},
        {"utf-8": "abc"},
        {"utf-8": True},
        {"utf-8": None},
        {"utf-8": float("nan")},
        {"utf-8": float("inf")},
        {"": 1},
        {"utf-8": 1, "koi8-r": 2},
    ],
)
def test_invalid_availability(available):
    with pytest.raises(InvalidAvailabilityError):
        negotiate_charset("utf-8", available)


def test_invalid_availability_names_offending_entry():
    with pytest.raises(InvalidAvailabilityError) as exc_info:
        negotiate_charset("utf-8", {"utf-8": 1, "koi8-r": 2})
    assert exc_info.value.identifier == "koi8-r"
    assert exc_info.value.weight == 2
    assert "koi8-r" in str(exc_info.value)


def test_invalid_availability_is_checked_before_the_header():
    with pytest.raises(InvalidAvailabilityError):
        negotiate_charset("utf-8;q=abc", {"utf-8": 2})


@pytest.mark.parametrize("weight", [1, 0.5, "0.5", Decimal("0.5"), Fraction(1, 2)])
def test_weight_types(weight):
    assert rank_available({"a": weight, "b": 0.25}) == [("a", Fraction(weight)), ("b", Fraction(1, 4))]


def test_float_weights_are_exact_decimals():
    assert rank_available({"a": 0.2}) == [("a", Fraction(1, 5))]


# --- Content-coding negotiation ---


@pytest.mark.parametrize(
    "accept_encoding, available, expected_encoding",
    [
        # 1. Declared order breaks equal q-factors
        ("gzip, zstd", {"zstd": 1, "gzip": 1, "identity": 1}, "gzip"),
        ("gzip;q=0.8, zstd;q=0.8", {"zstd": 1, "gzip": 1}, "gzip"),
        # 2. zstd has higher q-factor than gzip
        ("zstd;q=1.0, gzip;q=0.5", {"gzip": 1, "zstd": 1}, "zstd"),
        # 3. identity is implicitly acceptable
        ("br", {"zstd": 1, "identity": 1}, "identity"),
        ("gzip;q=0.5", {"zstd": 1, "identity": 1}, "identity"),
        # 4. zstd is forbidden, the wildcard picks gzip
        ("zstd;q=0, *;q=0.5", {"zstd": 1, "gzip": 0.8}, "gzip"),
        # 5. identity is explicitly forbidden
        ("identity;q=0, zstd;q=0.5", {"identity": 1, "zstd": 0.5}, "zstd"),
        # 6. Content-codings are case-insensitive
        ("ZSTD", {"zstd": 1}, "zstd"),
    ],
)
def test_negotiate_encoding(accept_encoding, available, expected_encoding):
    assert negotiate_encoding(accept_encoding, available) == expected_encoding


@pytest.mark.parametrize("accept_encoding", ["identity;q=0", "*;q=0", "gzip, identity;q=0"])
def test_encoding_not_acceptable(accept_encoding):
    with pytest.raises(NotAcceptableError) as exc_info:
        negotiate_encoding(accept_encoding, {"identity": 1})
    assert "content-codings" in str(exc_info.value)
    assert exc_info.value.header_name == "Accept-Encoding"


@pytest.mark.parametrize("accept_encoding", ["", "  "])
def test_empty_encoding_header_allows_only_identity(accept_encoding):
    assert negotiate_encoding(accept_encoding, {"gzip": 1, "identity": 0.5}) == "identity"

    with pytest.raises(NotAcceptableError) as exc_info:
        negotiate_encoding(accept_encoding, {"gzip": 1, "zstd": 1})
    assert exc_info.value.header == accept_encoding


def test_absent_encoding_header_uses_server_preference():
    assert negotiate_encoding(None, {"gzip": 1, "identity": 0.5}) == "gzip"


# --- Language negotiation ---


@pytest.mark.parametrize(
    "accept_language, available, expected_language",
    [
        ("da, en-gb;q=0.8, en;q=0.7", {"en": 1, "da": 1, "en-gb": 1}, "da"),
        # The most specific range applies to a tag
        ("da, en-gb;q=0.8, en;q=0.7", {"en-us": 1, "en-gb": 1}, "en-gb"),
        ("en;q=0.7, en-gb;q=0.8", {"en-us": 1, "en-gb": 1}, "en-gb"),
        # A range matches sub-tags
        ("en", {"fr": 1, "en-US": 1}, "en-US"),
        # A specific range overrides the wildcard
        ("en;q=0.5, *;q=0.8", {"en": 1, "de": 1}, "de"),
        ("EN-GB", {"en-gb": 1}, "en-gb"),
    ],
)
def test_negotiate_language(accept_language, available, expected_language):
    assert negotiate_language(accept_language, available) == expected_language


@pytest.mark.parametrize(
    "accept_language, available",
    [
        # No implicit default language
        ("fr", {"en": 1}),
        # A range does not match a less specific tag
        ("en-gb", {"en": 1}),
        # "en" must be followed by '-' to match
        ("en", {"eng": 1}),
    ],
)
def test_language_not_acceptable(accept_language, available):
    with pytest.raises(NotAcceptableError):
        negotiate_language(accept_language, available)


# --- Custom strategies ---


def test_custom_strategy_is_case_sensitive_by_default():
    negotiator = Negotiator(NegotiationStrategy(header_name="Accept-Flavour", noun="flavours"))
    assert negotiator.negotiate("vanilla, *;q=0.1", {"Vanilla": 1, "vanilla": 0.5}) == "vanilla"

    with pytest.raises(NotAcceptableError) as exc_info:
        negotiator.negotiate("Chocolate", {"chocolate": 1})
    assert str(exc_info.value).startswith("No available flavours match `Accept-Flavour: Chocolate`")


def test_custom_strategy_coalesce_hook():
    def always_plain(terms):
        return terms + (Term(len(terms), "plain", Fraction(1, 10)),)

    negotiator = Negotiator(
        NegotiationStrategy(header_name="Accept-Flavour", noun="flavours", coalesce=always_plain)
    )
    assert negotiator.negotiate("mint", {"plain": 1}) == "plain"


# --- Middleware ---


def state_homepage(request: Request):
    values = [
        getattr(request.state, key, "-") for key in ("charset", "encoding", "language")
    ]
    return PlainTextResponse(" ".join(values), status_code=200)


def build_app(**options):
    app = Starlette(routes=[Route("/", state_homepage), Route("/excluded", state_homepage)])
    app.add_middleware(NegotiationMiddleware, **options)
    return app


def test_middleware_negotiates_charset(test_client_factory):
    app = build_app(charsets={"utf-8": 1, "iso-8859-1": 0.5})

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-charset": "iso-8859-1"})
    assert response.status_code == 200
    assert response.text == "iso-8859-1 - -"


def test_middleware_without_header_uses_server_preference(test_client_factory):
    app = build_app(charsets={"utf-8": 1, "iso-8859-1": 0.5})

    client = test_client_factory(app)
    response = client.get("/")
    assert response.status_code == 200
    assert response.text == "utf-8 - -"


def test_middleware_negotiates_every_configured_header(test_client_factory):
    app = build_app(
        charsets={"utf-8": 1},
        encodings={"gzip": 1, "identity": 0.5},
        languages={"en-gb": 1, "de": 1},
    )

    client = test_client_factory(app)
    response = client.get(
        "/",
        headers={
            "accept-charset": "utf-8",
            "accept-encoding": "br, gzip;q=0.4",
            "accept-language": "de;q=0.5, en",
        },
    )
    assert response.status_code == 200
    assert response.text == "utf-8 identity en-gb"


def test_middleware_not_acceptable(test_client_factory):
    app = build_app(charsets={"utf-8": 1})

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-charset": "koi8-r"})
    assert response.status_code == 406
    assert response.text == (
        "No available charsets match `Accept-Charset: koi8-r`. Available set: [utf-8]"
    )


def test_middleware_not_acceptable_non_strict(test_client_factory):
    app = build_app(charsets={"utf-8": 1, "koi8-u": 0.5}, strict=False)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-charset": "koi8-r"})
    assert response.status_code == 200
    assert response.text == "utf-8 - -"


def test_middleware_malformed_header(test_client_factory):
    app = build_app(languages={"en": 1})

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-language": "en;q=high"})
    assert response.status_code == 400


def test_middleware_combines_repeated_headers(test_client_factory):
    app = build_app(charsets={"utf-8": 1, "koi8-r": 1})

    client = test_client_factory(app)
    response = client.get(
        "/",
        headers=[("accept-charset", "utf-8;q=0"), ("accept-charset", "koi8-r")],
    )
    assert response.status_code == 200
    assert response.text == "koi8-r - -"


def test_middleware_empty_encoding_header(test_client_factory):
    app = build_app(encodings={"gzip": 1, "identity": 0.5})

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": ""})
    assert response.status_code == 200
    assert response.text == "- identity -"


def test_middleware_excluded_handlers(test_client_factory):
    app = build_app(charsets={"utf-8": 1}, excluded_handlers=["/excluded"])

    client = test_client_factory(app)
    response = client.get("/excluded", headers={"accept-charset": "koi8-r"})
    assert response.status_code == 200
    assert response.text == "- - -"

    response = client.get("/", headers={"accept-charset": "koi8-r"})
    assert response.status_code == 406


def test_middleware_rejects_invalid_availability():
    app = Starlette(routes=[Route("/", state_homepage)])
    with pytest.raises(InvalidAvailabilityError):
        NegotiationMiddleware(app, charsets={"utf-8": 2})
