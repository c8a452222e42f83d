"""Dispatch one inbound API call to the handler for its action."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional

from .errors import AuthError
from .schemas import ChatRequest, decode_request

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Per-request facts supplied by the host: who is calling, and their session."""

    user_id: int
    session: MutableMapping[str, Any] = field(default_factory=dict)


@dataclass
class RouteResult:
    payload: Any
    status_code: int = 200
    stream: bool = False


Handler = Callable[[ChatRequest, RequestContext], Any]


class RequestRouter:
    """Authenticate, decode and dispatch. Holds no state across requests.

    Handlers return a result map, or an iterable of bytes for streamed replies.
    """

    def __init__(self, handlers: Mapping[str, Handler]) -> None:
        self._handlers: Dict[str, Handler] = dict(handlers)

    def route(
        self,
        data: Mapping[str, Any],
        user_id: Optional[int],
        session: Optional[MutableMapping[str, Any]] = None,
    ) -> RouteResult:
        if not user_id:
            logger.warning("Rejected chat API call without an authenticated user")
            raise AuthError("Authentication required")

        action = str(data.get("action") or "")
        handler = self._handlers.get(action)
        if handler is None:
            logger.info("Unknown chat API action %r from user %s", action, user_id)
            return RouteResult({"error": f"Invalid action: {action}"}, status_code=400)

        request = decode_request(action, data)
        logger.debug("Dispatching %s for user %s", action, user_id)
        context = RequestContext(user_id=user_id, session=session if session is not None else {})
        result = handler(request, context)
        if isinstance(result, Mapping):
            return RouteResult(dict(result))
        return RouteResult(result, stream=True)
