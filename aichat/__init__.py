"""Chat backend for embedded AI chat widgets.

A widget talks to one JSON endpoint; each turn is forwarded to a pluggable
OpenAI-compatible provider with a bounded, system-prompt-prefixed window of
the conversation, which is kept either durably in a database (per user and
chat id) or only for the browser session. The primary entry points are
``aichat.api.create_app`` for running the HTTP service and
``aichat.service.ChatService`` for embedding the chat engine directly into
Python code.
"""

from .config import ChatConfig, ProviderConfig, load_config
from .service import ChatService

__all__ = ["ChatConfig", "ProviderConfig", "ChatService", "load_config"]
