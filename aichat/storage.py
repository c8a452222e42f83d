"""Conversation stores: durable (database) and ephemeral (session bag).

Both stores expose the same ``append`` / ``list`` / ``delete`` contract so a
:class:`~aichat.models.Conversation` never needs to know which one it uses.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, MutableMapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from .db import ChatDataRecord, Database, MessageRecord
from .errors import StorageError
from .models import Message, TIMESTAMP_FMT

logger = logging.getLogger(__name__)

SESSION_MESSAGES_KEY = "aichat_messages"


class ConversationStore(ABC):
    """Abstract repository for the messages of a conversation."""

    @abstractmethod
    def append(self, message: Message, user_id: int) -> Message:
        """Persist one message and return the copy carrying its id."""

    @abstractmethod
    def list(self, conversation_id: str, user_id: int) -> List[Message]:
        """Return every message of the conversation, oldest first."""

    @abstractmethod
    def delete(self, conversation_id: str, user_id: int) -> int:
        """Remove the conversation's messages and return how many were removed."""


class DurableStore(ConversationStore):
    """Rows in ``chat_messages`` scoped by conversation id and owning user."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def append(self, message: Message, user_id: int) -> Message:
        db = self.database.session()
        try:
            record = MessageRecord(
                chat_id=message.conversation_id,
                user_id=user_id,
                role=message.role.value,
                message=message.content,
                timestamp=message.created_at,
            )
            db.add(record)
            db.commit()
            return message.with_id(record.id)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to store message for conversation %s", message.conversation_id)
            raise StorageError("Failed to save chat message") from exc
        finally:
            db.close()

    def list(self, conversation_id: str, user_id: int) -> List[Message]:
        db = self.database.session()
        try:
            rows = (
                db.query(MessageRecord)
                .filter(MessageRecord.chat_id == conversation_id, MessageRecord.user_id == user_id)
                .order_by(MessageRecord.timestamp.asc(), MessageRecord.id.asc())
                .all()
            )
            return [
                Message(
                    id=row.id,
                    conversation_id=row.chat_id,
                    role=row.role,
                    content=row.message,
                    created_at=row.timestamp,
                )
                for row in rows
            ]
        except SQLAlchemyError as exc:
            logger.exception("Failed to load conversation %s", conversation_id)
            raise StorageError("Failed to load chat from database") from exc
        finally:
            db.close()

    def delete(self, conversation_id: str, user_id: int) -> int:
        db = self.database.session()
        try:
            removed = (
                db.query(MessageRecord)
                .filter(MessageRecord.chat_id == conversation_id, MessageRecord.user_id == user_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return removed
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to delete conversation %s", conversation_id)
            raise StorageError("Failed to delete chat") from exc
        finally:
            db.close()


class EphemeralStore(ConversationStore):
    """Rows kept in one list inside the caller's session bag.

    The bag belongs to a single user session, so rows of every conversation the
    user touched share one collection and are filtered by ``chat_id`` on read.
    """

    def __init__(self, session: MutableMapping[str, Any]) -> None:
        self.session = session

    def _rows(self) -> List[Dict[str, Any]]:
        return self.session.setdefault(SESSION_MESSAGES_KEY, [])

    def append(self, message: Message, user_id: int) -> Message:
        stored = message.with_id(uuid.uuid4().hex)
        self._rows().append(
            {
                "id": stored.id,
                "chat_id": stored.conversation_id,
                "user_id": user_id,
                "role": stored.role.value,
                "message": stored.content,
                "timestamp": stored.created_at,
            }
        )
        return stored

    def list(self, conversation_id: str, user_id: int) -> List[Message]:
        rows = [row for row in self._rows() if row["chat_id"] == conversation_id]
        rows.sort(key=lambda row: _as_datetime(row["timestamp"]))
        return [
            Message(
                id=row["id"],
                conversation_id=row["chat_id"],
                role=row["role"],
                content=row["message"],
                created_at=_as_datetime(row["timestamp"]),
            )
            for row in rows
        ]

    def delete(self, conversation_id: str, user_id: int) -> int:
        rows = self._rows()
        kept = [row for row in rows if row["chat_id"] != conversation_id]
        removed = len(rows) - len(kept)
        rows[:] = kept
        return removed


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.strptime(str(value), TIMESTAMP_FMT)


class ChatDataRepository:
    """CRUD for the opaque per-widget configuration blobs in ``chat_data``."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def save(self, data: str) -> int:
        db = self.database.session()
        try:
            record = ChatDataRecord(data=data)
            db.add(record)
            db.commit()
            return record.id
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Failed to save chat data") from exc
        finally:
            db.close()

    def get(self, data_id: int) -> Optional[str]:
        db = self.database.session()
        try:
            record = db.get(ChatDataRecord, data_id)
            return record.data if record else None
        except SQLAlchemyError as exc:
            raise StorageError("Failed to load chat data") from exc
        finally:
            db.close()

    def update(self, data_id: int, data: str) -> None:
        db = self.database.session()
        try:
            record = db.get(ChatDataRecord, data_id)
            if record is None:
                raise StorageError(f"No chat data with id {data_id}")
            record.data = data
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Failed to update chat data") from exc
        finally:
            db.close()

    def delete(self, data_id: int) -> bool:
        db = self.database.session()
        try:
            removed = db.query(ChatDataRecord).filter(ChatDataRecord.id == data_id).delete()
            db.commit()
            return bool(removed)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Failed to delete chat data") from exc
        finally:
            db.close()
