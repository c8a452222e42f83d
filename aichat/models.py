"""Chat message and conversation model."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from .errors import ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from .storage import ConversationStore

logger = logging.getLogger(__name__)

TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A single role-tagged utterance. ``id`` is only set once persisted."""

    conversation_id: str
    role: Role
    content: str = ""
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[Union[int, str]] = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "role", Role(self.role))
        except ValueError as exc:
            raise ValidationError(f"Invalid message role: {self.role!r}") from exc
        if self.content is None:
            object.__setattr__(self, "content", "")

    def with_id(self, message_id: Union[int, str]) -> "Message":
        return replace(self, id=message_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.conversation_id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.created_at.strftime(TIMESTAMP_FMT),
        }


def new_conversation_id() -> str:
    return f"chat_{uuid.uuid4().hex}"


class Conversation:
    """Ordered messages of one conversation, bound to the store they live in.

    Messages appended during a turn stay pending until :meth:`save`, so a turn
    that fails half-way leaves the store untouched.
    """

    def __init__(
        self,
        store: "ConversationStore",
        conversation_id: Optional[str] = None,
        *,
        owner_user_id: int = 0,
        persistent: bool = False,
        max_window: Optional[int] = None,
    ) -> None:
        self.id = conversation_id or new_conversation_id()
        self.owner_user_id = owner_user_id
        self.max_window = max_window
        self._persistent = persistent
        self._store = store
        self._messages: List[Message] = list(store.list(self.id, owner_user_id))
        self._pending: List[int] = []

        now = utcnow()
        if self._messages:
            self.created_at = self._messages[0].created_at
            self.last_updated_at = self._messages[-1].created_at
        else:
            self.created_at = now
            self.last_updated_at = now
        self.title = f"AI Chat - {self.created_at.strftime(TIMESTAMP_FMT)}"
        logger.debug("Loaded %d message(s) for conversation %s", len(self._messages), self.id)

    @property
    def persistent(self) -> bool:
        return self._persistent

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def append(self, message: Message) -> Message:
        if message.conversation_id != self.id:
            raise ValidationError(
                f"Message belongs to conversation {message.conversation_id!r}, not {self.id!r}"
            )
        self._messages.append(message)
        self._pending.append(len(self._messages) - 1)
        self.last_updated_at = max(self.last_updated_at, utcnow())
        return message

    def add(self, role: Union[Role, str], content: str) -> Message:
        return self.append(Message(conversation_id=self.id, role=role, content=content))

    def save(self) -> None:
        """Write pending messages to the store, one atomic append each."""
        while self._pending:
            index = self._pending[0]
            self._messages[index] = self._store.append(self._messages[index], self.owner_user_id)
            self._pending.pop(0)

    def clear(self) -> int:
        removed = self._store.delete(self.id, self.owner_user_id)
        self._messages = []
        self._pending = []
        self.last_updated_at = max(self.last_updated_at, utcnow())
        logger.info("Cleared conversation %s (%d stored message(s) removed)", self.id, removed)
        return removed

    def to_dict(self) -> Dict[str, Any]:
        messages = [message.to_dict() for message in self._messages]
        if self.max_window is not None and self.max_window > 0:
            messages = messages[-self.max_window :]
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.strftime(TIMESTAMP_FMT),
            "user_id": self.owner_user_id,
            "messages": messages,
            "last_update": self.last_updated_at.strftime(TIMESTAMP_FMT),
            "persistent": self.persistent,
        }
