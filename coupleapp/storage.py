import logging
from contextlib import contextmanager
from typing import Generator, Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from coupleapp.errors import NotFoundError, StorageError
from coupleapp.utils import utc_now_iso

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("chat_messages", "diaries", "logs", "anniversaries")


class RecordStore:
    """
    Owns the SQLAlchemy engine and session factory for one process.

    Created in the application lifespan and handed to every component
    that needs storage; disposed on shutdown.
    """

    def __init__(self, database_url: str, timeout_seconds: float = 5.0, echo: bool = False):
        connect_args = {}
        if database_url.startswith("sqlite"):
            # check_same_thread=False is required for SQLite to work with FastAPI's threadpool.
            # timeout bounds how long a writer waits for the database lock.
            connect_args = {"check_same_thread": False, "timeout": timeout_seconds}

        self.database_url = database_url
        self.engine = create_engine(database_url, connect_args=connect_args, echo=echo)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        """
        Initialize the database by creating all tables.
        Called during application startup.
        """
        logger.debug(f"Initializing database with URL: {self.database_url}")
        try:
            # Import models to register them with Base.metadata
            from coupleapp import models  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Yield a session for reads; storage failures surface as StorageError.
        """
        db = self.SessionLocal()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Storage read failed: {e}")
            raise StorageError("storage read failed", {"reason": str(e.__class__.__name__)}) from e
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Yield a session whose work is committed as one unit.

        Any exception rolls the whole transaction back; SQLAlchemy errors
        (including lock timeouts) are re-raised as StorageError.
        """
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Storage transaction rolled back: {e}")
            raise StorageError("storage write failed", {"reason": str(e.__class__.__name__)}) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def check_health(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and all tables exist, False otherwise.
        """
        logger.debug("Checking database health...")
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
            existing = set(inspect(self.engine).get_table_names())
            missing = [name for name in REQUIRED_TABLES if name not in existing]
            if missing:
                logger.error(f"Database schema not applied, missing tables: {missing}")
                return False
            logger.debug("Database health check passed")
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


def get_store(request: Request) -> RecordStore:
    """Dependency returning the process-wide store created in the lifespan."""
    return request.app.state.store


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use; SQLAlchemy errors
    raised by the route surface as StorageError.
    """
    with get_store(request).session() as db:
        yield db


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to commit {what}: {e}")
        raise StorageError(f"failed to store {what}", {"reason": str(e.__class__.__name__)}) from e


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(
    db: Session,
    sender: str,
    content: str,
    timestamp: str,
    receiver: Optional[str] = None,
):
    """
    Insert a chat message. Duplicates are accepted; readers collapse them.

    Args:
        db: Database session
        sender: Sender name
        content: Message text
        timestamp: Caller-supplied ISO-8601 timestamp
        receiver: Receiver name, "all" (broadcast) when omitted

    Returns:
        The stored ChatMessage with its assigned id
    """
    from coupleapp.models import ChatMessage

    message = ChatMessage(
        sender=sender,
        receiver=receiver or "all",
        content=content,
        timestamp=timestamp,
    )
    db.add(message)
    _commit(db, "message")
    db.refresh(message)
    logger.info(f"Message stored: id={message.id}, sender={sender}, receiver={message.receiver}")
    return message


# =============================================================================
# Diary Repository Functions
# =============================================================================

def create_diary(db: Session, user: str, date: str, content: str, timestamp: str, tags: Optional[str] = None):
    """
    Insert a diary entry.

    Args:
        db: Database session
        user: Author
        date: Calendar day the entry is about (YYYY-MM-DD)
        content: Entry text
        timestamp: Caller-supplied ISO-8601 write time
        tags: Comma-separated tags, stored as "" when omitted

    Returns:
        The stored Diary with its assigned id
    """
    from coupleapp.models import Diary

    diary = Diary(user=user, date=date, content=content, timestamp=timestamp, tags=tags or "")
    db.add(diary)
    _commit(db, "diary")
    db.refresh(diary)
    logger.info(f"Diary stored: id={diary.id}, user={user}")
    return diary


def get_diaries(db: Session) -> list:
    """
    All diary entries, newest first.

    Args:
        db: Database session

    Returns:
        List of Diary objects ordered by timestamp, then id, descending
    """
    from coupleapp.models import Diary

    return db.query(Diary).order_by(Diary.timestamp.desc(), Diary.id.desc()).all()


def search_diaries(
    db: Session,
    keyword: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: Optional[str] = None,
) -> list:
    """
    Search diaries by keyword (content or tags), date range and author.

    Date bounds are inclusive and compared as YYYY-MM-DD strings.
    """
    from coupleapp.models import Diary

    query = db.query(Diary)

    if keyword:
        pattern = f"%{keyword}%"
        query = query.filter(Diary.content.like(pattern) | Diary.tags.like(pattern))
    if start_date:
        query = query.filter(Diary.date >= start_date)
    if end_date:
        query = query.filter(Diary.date <= end_date)
    if user:
        query = query.filter(Diary.user == user)

    diaries = query.order_by(Diary.timestamp.desc(), Diary.id.desc()).all()
    logger.debug(f"Diary search matched {len(diaries)} rows")
    return diaries


def update_diary(db: Session, diary_id: int, content: str, tags: Optional[str] = None):
    """
    Replace the content and tags of a diary entry.

    Args:
        db: Database session
        diary_id: Entry to update
        content: New text
        tags: New tags, "" when omitted

    Returns:
        The updated Diary

    Raises:
        NotFoundError: if no entry has this id
    """
    from coupleapp.models import Diary

    diary = db.get(Diary, diary_id)
    if diary is None:
        raise NotFoundError("diary", diary_id)

    diary.content = content
    diary.tags = tags or ""
    _commit(db, "diary")
    db.refresh(diary)
    logger.info(f"Diary updated: id={diary_id}")
    return diary


def delete_diary(db: Session, diary_id: int) -> None:
    """
    Delete a diary entry.

    Args:
        db: Database session
        diary_id: Entry to delete

    Raises:
        NotFoundError: if no entry has this id
    """
    from coupleapp.models import Diary

    deleted = db.query(Diary).filter(Diary.id == diary_id).delete()
    if deleted == 0:
        db.rollback()
        raise NotFoundError("diary", diary_id)
    _commit(db, "diary deletion")
    logger.info(f"Diary deleted: id={diary_id}")


# =============================================================================
# Log Repository Functions
# =============================================================================

def get_logs(db: Session, limit: int = 100) -> list:
    """
    Retrieve the most recent log entries.

    Args:
        db: Database session
        limit: Maximum number of entries to return

    Returns:
        List of LogEntry objects ordered by timestamp, then id, descending
    """
    from coupleapp.models import LogEntry

    return (
        db.query(LogEntry)
        .order_by(LogEntry.timestamp.desc(), LogEntry.id.desc())
        .limit(limit)
        .all()
    )


def count_logs(db: Session) -> int:
    """Number of stored log entries."""
    from coupleapp.models import LogEntry

    return db.query(LogEntry).count()


# =============================================================================
# Anniversary Repository Functions
# =============================================================================

def create_anniversary(
    db: Session,
    title: str,
    date: str,
    created_by: str,
    description: str = "",
    photos: str = "",
    is_recurring: bool = False,
    reminder_days: int = 1,
    category: str = "love",
):
    """
    Insert an anniversary; create_time is assigned by the server.

    Args:
        db: Database session
        title: Event name
        date: Origin occurrence (YYYY-MM-DD)
        created_by: Author
        description: Free text
        photos: Photo references
        is_recurring: Whether the event repeats every year
        reminder_days: How many days ahead a reminder is due
        category: Event category

    Returns:
        The stored Anniversary with its assigned id
    """
    from coupleapp.models import Anniversary

    anniversary = Anniversary(
        title=title,
        date=date,
        description=description,
        photos=photos,
        is_recurring=is_recurring,
        reminder_days=reminder_days,
        category=category,
        created_by=created_by,
        create_time=utc_now_iso(),
    )
    db.add(anniversary)
    _commit(db, "anniversary")
    db.refresh(anniversary)
    logger.info(f"Anniversary stored: id={anniversary.id}, title={title}, created_by={created_by}")
    return anniversary


def get_anniversaries(db: Session, created_by: Optional[str] = None) -> list:
    """
    Anniversaries ordered by date, then id.

    Args:
        db: Database session
        created_by: Only events by this author, when given

    Returns:
        List of Anniversary objects
    """
    from coupleapp.models import Anniversary

    query = db.query(Anniversary)
    if created_by:
        query = query.filter(Anniversary.created_by == created_by)
    return query.order_by(Anniversary.date.asc(), Anniversary.id.asc()).all()


def get_anniversary(db: Session, anniversary_id: int):
    """
    Fetch one anniversary.

    Raises:
        NotFoundError: if no event has this id
    """
    from coupleapp.models import Anniversary

    anniversary = db.get(Anniversary, anniversary_id)
    if anniversary is None:
        raise NotFoundError("anniversary", anniversary_id)
    return anniversary


def update_anniversary(db: Session, anniversary_id: int, **fields):
    """
    Replace every editable field of an anniversary.

    `created_by` and `create_time` are never changed by an update.
    """
    anniversary = get_anniversary(db, anniversary_id)
    for name, value in fields.items():
        setattr(anniversary, name, value)
    _commit(db, "anniversary")
    db.refresh(anniversary)
    logger.info(f"Anniversary updated: id={anniversary_id}")
    return anniversary


def delete_anniversary(db: Session, anniversary_id: int) -> None:
    """
    Delete an anniversary.

    Args:
        db: Database session
        anniversary_id: Event to delete

    Raises:
        NotFoundError: if no event has this id
    """
    from coupleapp.models import Anniversary

    deleted = db.query(Anniversary).filter(Anniversary.id == anniversary_id).delete()
    if deleted == 0:
        db.rollback()
        raise NotFoundError("anniversary", anniversary_id)
    _commit(db, "anniversary deletion")
    logger.info(f"Anniversary deleted: id={anniversary_id}")
