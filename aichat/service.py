"""High level orchestration for chat turns, history loading and clearing."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, Optional

from .config import ChatConfig
from .db import Database
from .errors import ChatError, ValidationError, public_message
from .llm_client import ProviderRegistry, ReplyStream, StreamingProvider
from .models import Conversation, Role
from .router import RequestContext
from .schemas import ClearChatRequest, ListServicesRequest, LoadChatRequest, SendMessageRequest
from .storage import ConversationStore, DurableStore, EphemeralStore

logger = logging.getLogger(__name__)


def sse_event(event: str, payload: Dict[str, Any]) -> bytes:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n".encode("utf-8")


class ChatService:
    """Core chat engine used by both the API and direct Python consumers.

    Turns on the same conversation id are not serialized. Two concurrent turns
    each load the history, call the provider and append their own messages, so
    the stored order interleaves and each reply only saw the history that
    existed when its turn started (last write wins). One person typing into
    one widget makes this rare enough to accept.
    """

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        *,
        database: Optional[Database] = None,
        registry: Optional[ProviderRegistry] = None,
    ) -> None:
        self.config = config or ChatConfig()
        self.database = database or Database(self.config.database_url)
        self.registry = registry or ProviderRegistry(self.config)
        self.durable_store = DurableStore(self.database)

    def handlers(self) -> Dict[str, Any]:
        return {
            "send_message": self.send_message,
            "load_chat": self.load_chat,
            "get_chat": self.load_chat,
            "clear_chat": self.clear_chat,
            "get_available_services": self.available_services,
        }

    def store_for(self, persistent: bool, context: RequestContext) -> ConversationStore:
        if persistent:
            return self.durable_store
        return EphemeralStore(context.session)

    def open_conversation(
        self,
        chat_id: str,
        context: RequestContext,
        *,
        persistent: bool,
        max_window: Optional[int] = None,
    ) -> Conversation:
        return Conversation(
            self.store_for(persistent, context),
            chat_id,
            owner_user_id=context.user_id,
            persistent=persistent,
            max_window=max_window,
        )

    def send_message(self, request: SendMessageRequest, context: RequestContext):
        """Run one chat turn.

        Returns the result map, or for streaming providers an iterator of bytes
        relaying the provider stream followed by a ``chat_result`` event.
        """
        limit = self.config.char_limit
        if limit > 0 and len(request.message) > limit:
            raise ValidationError(f"Message too long. Maximum {limit} characters allowed.")

        max_window = request.max_memory if request.max_memory is not None else self.config.default_max_memory
        provider = self.registry.resolve(request.ai_service)
        conversation = self.open_conversation(
            request.chat_id, context, persistent=request.persistent, max_window=max_window
        )
        conversation.add(Role.USER, request.message)
        logger.info(
            "Chat turn for %s (user=%s, service=%s, persistent=%s, history=%d)",
            conversation.id,
            context.user_id,
            request.ai_service,
            conversation.persistent,
            len(conversation.messages),
        )

        if isinstance(provider, StreamingProvider):
            reply_stream = provider.stream(conversation, request.system_prompt, max_window)
            return self._relay(conversation, reply_stream)

        reply = provider.send(conversation, request.system_prompt, max_window)
        conversation.append(reply)
        conversation.save()
        return {"success": True, "message": reply.content, "chat": conversation.to_dict()}

    def _relay(self, conversation: Conversation, reply_stream: ReplyStream) -> Iterator[bytes]:
        chunks = iter(reply_stream)
        try:
            for chunk in chunks:
                yield chunk
            reply = reply_stream.message()
            conversation.append(reply)
            conversation.save()
        except ChatError as exc:
            logger.warning("Streamed chat turn for %s failed: %s", conversation.id, exc.message)
            yield sse_event("chat_error", {"error": public_message(exc)})
            return
        except Exception:
            logger.exception("Streamed chat turn for %s failed", conversation.id)
            yield sse_event("chat_error", {"error": "Internal server error"})
            return
        finally:
            # Client went away mid-stream: release the provider connection.
            chunks.close()

        yield sse_event(
            "chat_result",
            {"success": True, "message": reply.content, "chat": conversation.to_dict()},
        )

    def load_chat(self, request: LoadChatRequest, context: RequestContext) -> Dict[str, Any]:
        conversation = self.open_conversation(request.chat_id, context, persistent=request.persistent)
        return {"success": True, "chat": conversation.to_dict()}

    def clear_chat(self, request: ClearChatRequest, context: RequestContext) -> Dict[str, Any]:
        conversation = self.open_conversation(request.chat_id, context, persistent=request.persistent)
        conversation.clear()
        return {"success": True, "message": "Chat cleared"}

    def available_services(self, request: ListServicesRequest, context: RequestContext) -> Dict[str, Any]:
        return {"success": True, "services": self.registry.available_services()}
