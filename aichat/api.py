"""FastAPI entry point exposing the chat widget's JSON endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response, StreamingResponse

from .auth import HeaderIdentityProvider, IdentityProvider
from .config import ChatConfig
from .errors import ChatError, ValidationError, public_message
from .router import RequestRouter
from .service import ChatService
from .sessions import SessionRegistry
from .utils import setup_logging

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}
CORS_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


async def read_request_data(request: Request) -> Dict[str, Any]:
    """Decode query parameters (GET) or a JSON / form-encoded body (POST)."""
    if request.method == "GET":
        return dict(request.query_params)

    raw = (await request.body()).decode("utf-8", errors="replace")
    text = raw.strip()
    if not text:
        return {}
    if text.startswith("{") or text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON in request body: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise ValidationError("Invalid request data format")
        return data
    return dict(parse_qsl(text, keep_blank_values=True))


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=NO_CACHE_HEADERS)


def create_app(
    chat_config: Optional[ChatConfig] = None,
    *,
    service: Optional[ChatService] = None,
    identity: Optional[IdentityProvider] = None,
    sessions: Optional[SessionRegistry] = None,
    log_dir: Optional[str] = None,
) -> FastAPI:
    config = chat_config or (service.config if service else ChatConfig())
    if log_dir or config.log_dir:
        setup_logging(log_dir or config.log_dir, logging.INFO)

    service = service or ChatService(config)
    service.database.init_db()
    identity = identity or HeaderIdentityProvider(config.identity_header)
    sessions = sessions or SessionRegistry(config.session_ttl_seconds)

    app = FastAPI(title="AI Chat", version="0.1.0")
    app.state.service = service
    app.state.router = RequestRouter(service.handlers())
    app.state.identity = identity
    app.state.sessions = sessions

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.api_route(config.api_path, methods=["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"])
    async def chat_api(request: Request):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        if request.method not in ("GET", "POST"):
            return _error("Method not allowed", 405)

        user_id = app.state.identity.get_current_user_id(request)
        session_id = request.cookies.get(config.session_cookie) or ""
        bag = None
        if user_id:
            session_id = session_id or app.state.sessions.new_session_id()
            bag = app.state.sessions.get_bag(f"{user_id}:{session_id}")

        try:
            data = await read_request_data(request) if user_id else {}
            result = await run_in_threadpool(app.state.router.route, data, user_id, bag)
        except ChatError as exc:
            if exc.status_code >= 500:
                logger.error("Chat API call failed (user=%s): %s", user_id, exc.message)
            else:
                logger.info("Chat API call rejected (user=%s): %s", user_id, exc.message)
            return _error(public_message(exc), exc.status_code)
        except Exception:
            logger.exception("Chat API call failed (user=%s)", user_id)
            return _error("Internal server error", 500)

        if result.stream:
            response: Response = StreamingResponse(
                result.payload, media_type="text/event-stream", headers=NO_CACHE_HEADERS
            )
        else:
            response = JSONResponse(result.payload, status_code=result.status_code, headers=NO_CACHE_HEADERS)
        if bag is not None and request.cookies.get(config.session_cookie) != session_id:
            response.set_cookie(config.session_cookie, session_id, httponly=True, samesite="lax")
        return response

    return app
