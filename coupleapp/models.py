"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.

All tables use AUTOINCREMENT ids so an id is never reused after a delete;
message deduplication relies on ids growing in insertion order.
"""

from sqlalchemy import Boolean, Column, Integer, String, Text

from coupleapp.storage import Base


class ChatMessage(Base):
    """
    SQLAlchemy model for chat messages.

    Table: chat_messages
    Rows may repeat (sender, receiver, content, timestamp) when a client
    retries a send; readers collapse those groups to the smallest id.
    """
    __tablename__ = "chat_messages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    sender = Column(String, nullable=False, index=True)
    receiver = Column(String, nullable=False, default="all", index=True)  # "all" = broadcast
    content = Column(Text, nullable=False)
    timestamp = Column(String, nullable=False, index=True)  # ISO-8601, caller supplied


class Diary(Base):
    """
    SQLAlchemy model for personal diary entries.

    Table: diaries
    """
    __tablename__ = "diaries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    user = Column(String, nullable=False, index=True)
    date = Column(String, nullable=False)  # YYYY-MM-DD
    content = Column(Text, nullable=False)
    timestamp = Column(String, nullable=False)
    tags = Column(String, nullable=False, default="")


class LogEntry(Base):
    """
    SQLAlchemy model for the client log stream.

    Table: logs
    Append-only; batches are written atomically by LogBatchCommitter.
    """
    __tablename__ = "logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    timestamp = Column(String, nullable=False, index=True)
    level = Column(String, nullable=False)
    user = Column(String, nullable=False)
    message = Column(Text, nullable=False)


class Anniversary(Base):
    """
    SQLAlchemy model for anniversary events.

    Table: anniversaries
    `date` is the origin occurrence; only its month/day matter for
    yearly recurrence.
    """
    __tablename__ = "anniversaries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    date = Column(String, nullable=False)  # YYYY-MM-DD
    description = Column(Text, nullable=False, default="")
    photos = Column(Text, nullable=False, default="")
    is_recurring = Column(Boolean, nullable=False, default=False)
    reminder_days = Column(Integer, nullable=False, default=1)
    category = Column(String, nullable=False, default="love")
    created_by = Column(String, nullable=False, index=True)
    create_time = Column(String, nullable=False)  # Server time ISO-8601
