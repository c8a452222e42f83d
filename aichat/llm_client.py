"""Clients for OpenAI-compatible chat-completions providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import requests

from .config import SERVICE_PRIORITY, ChatConfig, ProviderConfig
from .errors import ProtocolError, ProviderAuthError, ProviderError, TransportError, ValidationError
from .models import Conversation, Message, Role
from .streaming import DONE, LineSplitter, parse_line

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_KEY = "default"
DEFAULT_SERVICE_LABEL = "Use Global Default"


def build_window(
    messages: Iterable[Message],
    system_prompt: Optional[str] = None,
    max_window: Optional[int] = None,
) -> List[Dict[str, str]]:
    """Return the role/content list sent to a provider for one turn.

    Only the last ``max_window`` messages are kept when it is positive. A
    non-blank system prompt is always prepended and never counts against the
    window.
    """
    window = [{"role": message.role.value, "content": message.content} for message in messages]
    if max_window is not None and max_window > 0:
        window = window[-max_window:]
    if system_prompt and system_prompt.strip():
        window.insert(0, {"role": Role.SYSTEM.value, "content": system_prompt})
    return window


class ProviderClient(ABC):
    """Turns a conversation into a chat-completions request and normalizes the reply."""

    streaming = False

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def name(self) -> str:
        return self.config.label or self.config.key

    def build_payload(
        self,
        conversation: Conversation,
        system_prompt: Optional[str] = None,
        max_window: Optional[int] = None,
    ) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "model": self.config.model,
            "messages": build_window(conversation.messages, system_prompt, max_window),
            "temperature": self.config.temperature,
            "stream": self.streaming,
        }
        if self.config.extra_params:
            payload.update(self.config.extra_params)
        return payload

    @abstractmethod
    def send(
        self,
        conversation: Conversation,
        system_prompt: Optional[str] = None,
        max_window: Optional[int] = None,
    ) -> Message:
        """Return the assistant reply for ``conversation``."""

    def _post(self, payload: Dict[str, object], *, stream: bool) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        proxies = {"http": self.config.proxy, "https": self.config.proxy} if self.config.proxy else None
        logger.info(
            "Requesting %s completion from %s using model %s (%d message(s))",
            "streaming" if stream else "buffered",
            self.config.endpoint,
            self.config.model,
            len(payload.get("messages") or []),
        )
        try:
            response = requests.post(
                self.config.endpoint,
                json=payload,
                headers=headers,
                stream=stream,
                timeout=self.config.request_timeout,
                verify=self.config.ca_bundle or True,
                proxies=proxies,
            )
        except requests.RequestException as exc:
            logger.warning("Request to %s failed: %s", self.name, exc)
            raise TransportError(f"HTTP Error: {exc}") from exc
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        message = _error_message(response) or f"HTTP {status}"
        response.close()
        logger.warning("%s answered HTTP %d: %s", self.name, status, message)
        if status == 401:
            raise ProviderAuthError(f"Invalid API key: {message}")
        raise ProviderError(message, http_status=status)


def _error_message(response: requests.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    if isinstance(error, str) and error.strip():
        return error
    return None


class BufferedProvider(ProviderClient):
    """Provider answering with one JSON document per request."""

    def send(
        self,
        conversation: Conversation,
        system_prompt: Optional[str] = None,
        max_window: Optional[int] = None,
    ) -> Message:
        payload = self.build_payload(conversation, system_prompt, max_window)
        response = self._post(payload, stream=False)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"Invalid JSON response from {self.name}") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProtocolError(f"Unexpected response structure from {self.name}") from exc
        if not isinstance(content, str):
            raise ProtocolError(f"Unexpected response structure from {self.name}")

        logger.debug("Received %d character(s) from %s", len(content), self.name)
        return Message(conversation_id=conversation.id, role=Role.ASSISTANT, content=content)


class ReplyStream:
    """Relay a streamed provider response while assembling the reply.

    Iterating yields the provider's raw byte chunks unchanged, in arrival
    order. ``completed`` only turns true once ``[DONE]`` arrived or the body
    ended on a line boundary; a stream closed early or cut off mid-event
    never reports a complete reply.
    """

    def __init__(self, response: requests.Response, conversation_id: str, provider_name: str) -> None:
        self._response = response
        self.conversation_id = conversation_id
        self.provider_name = provider_name
        self._parts: List[str] = []
        self._started = False
        self.completed = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def _consume(self, lines: Sequence[str]) -> bool:
        for line in lines:
            delta = parse_line(line)
            if delta is DONE:
                return True
            if delta:
                self._parts.append(delta)
        return False

    def __iter__(self) -> Iterator[bytes]:
        if self._started:
            raise RuntimeError("A reply stream can only be iterated once")
        self._started = True

        splitter = LineSplitter()
        try:
            done = False
            for chunk in self._response.iter_content(chunk_size=None):
                if not chunk:
                    continue
                yield chunk
                if self._consume(splitter.feed(chunk)):
                    done = True
                    break
            if not done:
                tail = [line for line in splitter.flush() if line.strip()]
                if tail and not self._consume(tail):
                    logger.warning("Stream from %s ended in the middle of an event", self.provider_name)
                    return
            self.completed = True
            logger.debug("Stream from %s complete (%d character(s))", self.provider_name, len(self.text))
        except requests.RequestException as exc:
            logger.warning("Stream from %s broke off: %s", self.provider_name, exc)
            raise TransportError(f"HTTP Error: {exc}") from exc
        finally:
            self._response.close()

    def drain(self) -> "ReplyStream":
        for _ in self:
            pass
        return self

    def message(self) -> Message:
        if not self.completed:
            raise ProtocolError(f"Incomplete streamed response from {self.provider_name}")
        return Message(conversation_id=self.conversation_id, role=Role.ASSISTANT, content=self.text)


class StreamingProvider(ProviderClient):
    """Provider answering with a server-sent-events stream of deltas."""

    streaming = True

    def stream(
        self,
        conversation: Conversation,
        system_prompt: Optional[str] = None,
        max_window: Optional[int] = None,
    ) -> ReplyStream:
        """Open the request now and return the stream to relay.

        HTTP status errors are raised here, before any byte is forwarded.
        """
        payload = self.build_payload(conversation, system_prompt, max_window)
        response = self._post(payload, stream=True)
        return ReplyStream(response, conversation.id, self.name)

    def send(
        self,
        conversation: Conversation,
        system_prompt: Optional[str] = None,
        max_window: Optional[int] = None,
    ) -> Message:
        return self.stream(conversation, system_prompt, max_window).drain().message()


ProviderFactory = Callable[[ProviderConfig], ProviderClient]


class ProviderRegistry:
    """Maps service keys to provider constructors, resolved once at startup."""

    def __init__(self, config: ChatConfig) -> None:
        self.config = config
        self._providers: Dict[str, ProviderConfig] = config.enabled_providers()
        self._factories: Dict[str, ProviderFactory] = {
            key: StreamingProvider if cfg.streaming else BufferedProvider
            for key, cfg in self._providers.items()
        }
        if config.default_service and config.default_service not in self._providers:
            raise ValueError(f"Default service '{config.default_service}' is not an enabled service")

    def register(self, key: str, factory: ProviderFactory) -> None:
        if key not in self._providers:
            raise ValueError(f"Service '{key}' is not enabled")
        self._factories[key] = factory

    def ordered_keys(self) -> List[str]:
        ranked = [key for key in SERVICE_PRIORITY if key in self._providers]
        return ranked + [key for key in self._providers if key not in ranked]

    def default_key(self) -> str:
        if self.config.default_service:
            return self.config.default_service
        keys = self.ordered_keys()
        if not keys:
            raise ProviderError("No AI service configured")
        return keys[0]

    def available_services(self) -> Dict[str, str]:
        services = {DEFAULT_SERVICE_KEY: DEFAULT_SERVICE_LABEL}
        for key in self.ordered_keys():
            services[key] = self._providers[key].label
        return services

    def resolve(self, service: Optional[str] = None) -> ProviderClient:
        key = (service or DEFAULT_SERVICE_KEY).strip().lower()
        if key == DEFAULT_SERVICE_KEY:
            key = self.default_key()
        if key not in self._providers:
            raise ValidationError(f"Unknown AI service: {service}")
        logger.debug("Resolved AI service %r to %s", service, key)
        return self._factories[key](self._providers[key])
