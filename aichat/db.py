"""SQLAlchemy schema and session factory for the durable chat store."""

from __future__ import annotations

import logging

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


class MessageRecord(Base):
    """One persisted chat turn (user or assistant).

    Rows are append-only and keyed by ``(chat_id, user_id)``; reading a
    conversation orders them by ``timestamp`` then ``id``.
    """

    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(String(255), nullable=False)
    user_id = Column(Integer, nullable=True)
    role = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_chat_messages_chat_user", "chat_id", "user_id"),)


class ChatDataRecord(Base):
    """Opaque configuration blob stored for a chat widget."""

    __tablename__ = "chat_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text, nullable=True)


class Database:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        # SQLite connections are used from FastAPI's worker threads.
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args, echo=echo)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        """Create tables if they do not yet exist."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Chat tables ready on %s", self.engine.url.render_as_string(hide_password=True))

    def session(self):
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()
