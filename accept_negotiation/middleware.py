"""
ASGI middleware that negotiates Accept-* headers for every HTTP request.
"""
import re

import structlog
from starlette.datastructures import Headers
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from accept_negotiation.exceptions import MalformedHeaderError, NotAcceptableError
from accept_negotiation.negotiator import AvailabilityMap, Negotiator, rank_available
from accept_negotiation.strategies import (
    charset_negotiator,
    encoding_negotiator,
    language_negotiator,
)

logger = structlog.get_logger(__name__)


class NegotiationMiddleware:
    """
    Stores the negotiated charset, content-coding and language on
    ``scope["state"]`` (``request.state.charset`` etc. in Starlette).

    Only the dimensions given an availability map are negotiated. The maps
    are validated here, so a bad map fails at startup rather than per request.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        charsets: AvailabilityMap | None = None,
        encodings: AvailabilityMap | None = None,
        languages: AvailabilityMap | None = None,
        excluded_handlers: list | None = None,
        strict: bool = True,
    ) -> None:
        self.app = app
        self.strict = strict
        self.dimensions: list[tuple[str, str, Negotiator, AvailabilityMap, str]] = []
        for state_key, header, negotiator, available in (
            ("charset", "accept-charset", charset_negotiator, charsets),
            ("encoding", "accept-encoding", encoding_negotiator, encodings),
            ("language", "accept-language", language_negotiator, languages),
        ):
            if available is None:
                continue
            default = rank_available(available)[0][0]
            self.dimensions.append((state_key, header, negotiator, dict(available), default))

        if excluded_handlers is None:
            excluded_handlers = []
        self.excluded_handlers = [re.compile(path) for path in excluded_handlers]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._is_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        state = scope.setdefault("state", {})
        for state_key, header, negotiator, available, default in self.dimensions:
            # rfc2616-sec4.2: repeated list headers combine into one value
            values = headers.getlist(header)
            raw_header = ", ".join(values) if values else None
            try:
                state[state_key] = negotiator.negotiate(raw_header, available)
            except MalformedHeaderError as exc:
                logger.info("malformed_accept_header", header=header, value=raw_header)
                response = PlainTextResponse(str(exc), status_code=400)
                await response(scope, receive, send)
                return
            except NotAcceptableError as exc:
                if not self.strict:
                    state[state_key] = default
                    continue
                logger.info("not_acceptable", header=header, value=raw_header)
                response = PlainTextResponse(str(exc), status_code=406)
                await response(scope, receive, send)
                return

        await self.app(scope, receive, send)

    def _is_excluded(self, path: str) -> bool:
        return any(pattern.search(path) for pattern in self.excluded_handlers)
