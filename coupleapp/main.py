import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import FastAPI, Response, Request, Depends, Body, Query, status
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session

from coupleapp.anniversaries import AnniversaryProjector, UpcomingAnniversary
from coupleapp.config import get_settings
from coupleapp.dedup import MessageDeduplicator
from coupleapp.errors import (
    AppError,
    StorageError,
    ValidationError,
    app_error_handler,
    request_validation_error_handler,
)
from coupleapp.log_batch import LogBatchCommitter
from coupleapp.logging_utils import setup_logging, RequestLoggingMiddleware, log_operation_data
from coupleapp.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_log_batch_outcome,
    record_purged_duplicates,
)
from coupleapp.schemas import (
    AnniversaryCreate,
    AnniversaryResponse,
    AnniversaryUpdate,
    DeleteResponse,
    DiaryCreate,
    DiaryResponse,
    DiaryUpdate,
    DuplicateGroupResponse,
    ErrorResponse,
    HealthResponse,
    LogBatchResponse,
    LogResponse,
    MessageCreate,
    MessageResponse,
    PurgeResponse,
    UpcomingAnniversaryResponse,
)
from coupleapp import storage
from coupleapp.storage import RecordStore, get_db, get_store


settings = get_settings()

# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: open the record store and create tables
    - Shutdown: dispose of the engine
    """
    store = RecordStore(settings.DATABASE_URL, timeout_seconds=settings.DB_TIMEOUT_SECONDS)
    store.init_db()
    app.state.store = store
    yield
    store.dispose()


app = FastAPI(
    title="Couple API",
    description="Chat messages, diaries, anniversaries and client logs",
    version="1.0.0",
    lifespan=lifespan,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)

app.add_middleware(RequestLoggingMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)


def get_deduplicator(store: RecordStore = Depends(get_store)) -> MessageDeduplicator:
    return MessageDeduplicator(store)


def get_log_committer(store: RecordStore = Depends(get_store)) -> LogBatchCommitter:
    return LogBatchCommitter(store)


def get_projector(store: RecordStore = Depends(get_store)) -> AnniversaryProjector:
    return AnniversaryProjector(store)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response, store: RecordStore = Depends(get_store)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and all
    tables exist, otherwise 503 (Service Unavailable).
    """
    if not store.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Message Routes
# =============================================================================

@app.post("/api/messages", response_model=MessageResponse)
def create_message(payload: MessageCreate, db: Session = Depends(get_db)) -> MessageResponse:
    """
    Store a chat message. Retried sends may create duplicate rows; every
    read path below collapses them.
    """
    message = storage.create_message(
        db=db,
        sender=payload.sender,
        receiver=payload.receiver,
        content=payload.content,
        timestamp=payload.timestamp,
    )
    return MessageResponse.model_validate(message)


@app.get("/api/messages", response_model=list[MessageResponse])
def list_messages(
    user1: Annotated[str | None, Query(description="First party of a conversation")] = None,
    user2: Annotated[str | None, Query(description="Second party of a conversation")] = None,
    deduplicator: MessageDeduplicator = Depends(get_deduplicator),
) -> list[MessageResponse]:
    """
    List messages, one per duplicate group.

    - With user1 and user2: the conversation between them, oldest first
    - Otherwise, including when only one of user1/user2 is given: every
      message, newest first

    Ties on timestamp are ordered by id ascending.
    """
    if user1 and user2:
        messages = deduplicator.list_between(user1, user2)
    else:
        messages = deduplicator.list_all()
    return [MessageResponse.model_validate(msg) for msg in messages]


@app.get("/api/messages/duplicates", response_model=list[DuplicateGroupResponse])
def list_duplicate_messages(
    deduplicator: MessageDeduplicator = Depends(get_deduplicator),
) -> list[DuplicateGroupResponse]:
    """Report duplicate groups without changing anything."""
    return [DuplicateGroupResponse.model_validate(group) for group in deduplicator.find_duplicate_groups()]


@app.post("/api/messages/purge-duplicates", response_model=PurgeResponse)
def purge_duplicate_messages(
    request: Request,
    deduplicator: MessageDeduplicator = Depends(get_deduplicator),
) -> PurgeResponse:
    """
    Delete every duplicate message except the earliest (smallest id) of
    each group. Safe to repeat: a second call removes nothing.
    """
    removed = deduplicator.purge_duplicates()
    record_purged_duplicates(removed)
    log_operation_data(request, removed=removed)
    return PurgeResponse(removed=removed)


@app.get("/api/messages/{username}", response_model=list[MessageResponse])
def list_user_messages(
    username: str,
    deduplicator: MessageDeduplicator = Depends(get_deduplicator),
) -> list[MessageResponse]:
    """Messages sent by or to a user plus broadcasts, newest first."""
    return [MessageResponse.model_validate(msg) for msg in deduplicator.list_for_user(username)]


# =============================================================================
# Diary Routes
# =============================================================================

@app.get("/api/diaries", response_model=list[DiaryResponse])
def list_diaries(db: Session = Depends(get_db)) -> list[DiaryResponse]:
    return [DiaryResponse.model_validate(diary) for diary in storage.get_diaries(db)]


@app.post("/api/diaries", response_model=DiaryResponse, status_code=status.HTTP_201_CREATED)
def create_diary(payload: DiaryCreate, db: Session = Depends(get_db)) -> DiaryResponse:
    diary = storage.create_diary(
        db=db,
        user=payload.user,
        date=payload.date,
        content=payload.content,
        timestamp=payload.timestamp,
        tags=payload.tags,
    )
    return DiaryResponse.model_validate(diary)


@app.get("/api/diaries/search", response_model=list[DiaryResponse])
def search_diaries(
    keyword: Annotated[str | None, Query(description="Substring of content or tags")] = None,
    start_date: Annotated[str | None, Query(alias="startDate", description="Earliest date, inclusive")] = None,
    end_date: Annotated[str | None, Query(alias="endDate", description="Latest date, inclusive")] = None,
    user: Annotated[str | None, Query(description="Diary author")] = None,
    db: Session = Depends(get_db),
) -> list[DiaryResponse]:
    diaries = storage.search_diaries(
        db=db,
        keyword=keyword,
        start_date=start_date,
        end_date=end_date,
        user=user,
    )
    return [DiaryResponse.model_validate(diary) for diary in diaries]


@app.put("/api/diaries/{diary_id}", response_model=DiaryResponse)
def update_diary(diary_id: int, payload: DiaryUpdate, db: Session = Depends(get_db)) -> DiaryResponse:
    diary = storage.update_diary(db, diary_id, content=payload.content, tags=payload.tags)
    return DiaryResponse.model_validate(diary)


@app.delete("/api/diaries/{diary_id}", response_model=DeleteResponse)
def delete_diary(diary_id: int, db: Session = Depends(get_db)) -> DeleteResponse:
    storage.delete_diary(db, diary_id)
    return DeleteResponse()


# =============================================================================
# Log Routes
# =============================================================================

@app.post("/api/logs", response_model=LogBatchResponse, status_code=status.HTTP_201_CREATED)
def submit_logs(
    request: Request,
    payload: Annotated[Any, Body(description="One log entry or a list of entries")],
    committer: LogBatchCommitter = Depends(get_log_committer),
) -> LogBatchResponse:
    """
    Save a batch of log entries atomically.

    - Any entry missing timestamp, level, user or message rejects the
      whole batch with 422 VALIDATION_ERROR; nothing is written
    - A storage failure rolls the batch back and returns 500 STORAGE_ERROR
    """
    entries = payload if isinstance(payload, list) else [payload]

    try:
        result = committer.commit_batch(entries)
    except ValidationError:
        record_log_batch_outcome("validation_error")
        log_operation_data(request, result="validation_error", batch_size=len(entries))
        raise
    except StorageError:
        record_log_batch_outcome("storage_error")
        log_operation_data(request, result="storage_error", batch_size=len(entries))
        raise

    record_log_batch_outcome("saved")
    log_operation_data(request, result="saved", saved=result.saved_count)
    return LogBatchResponse(saved=result.saved_count, success=True)


@app.get("/api/logs", response_model=list[LogResponse])
def list_logs(
    limit: Annotated[int | None, Query(ge=1, le=1000, description="Maximum number of entries")] = None,
    db: Session = Depends(get_db),
) -> list[LogResponse]:
    logs = storage.get_logs(db, limit=limit or settings.LOGS_DEFAULT_LIMIT)
    return [LogResponse.model_validate(entry) for entry in logs]


# =============================================================================
# Anniversary Routes
# =============================================================================

def _projected(items: list[UpcomingAnniversary]) -> list[UpcomingAnniversaryResponse]:
    return [
        UpcomingAnniversaryResponse(
            **AnniversaryResponse.model_validate(item.anniversary).model_dump(),
            next_occurrence=item.next_occurrence.isoformat(),
            days_until=item.days_until,
        )
        for item in items
    ]


@app.get("/api/anniversaries", response_model=list[AnniversaryResponse])
def list_anniversaries(
    user: Annotated[str | None, Query(description="Only events created by this user")] = None,
    db: Session = Depends(get_db),
) -> list[AnniversaryResponse]:
    return [AnniversaryResponse.model_validate(a) for a in storage.get_anniversaries(db, created_by=user)]


@app.post("/api/anniversaries", response_model=AnniversaryResponse, status_code=status.HTTP_201_CREATED)
def create_anniversary(payload: AnniversaryCreate, db: Session = Depends(get_db)) -> AnniversaryResponse:
    anniversary = storage.create_anniversary(db, **payload.model_dump())
    return AnniversaryResponse.model_validate(anniversary)


@app.get("/api/anniversaries/upcoming", response_model=list[UpcomingAnniversaryResponse])
def upcoming_anniversaries(
    days: Annotated[int | None, Query(ge=0, le=366, description="Window size in days")] = None,
    user: Annotated[str | None, Query(description="Only events created by this user")] = None,
    projector: AnniversaryProjector = Depends(get_projector),
) -> list[UpcomingAnniversaryResponse]:
    """
    Events whose next occurrence is within `days` of today (default 7),
    soonest first.
    """
    window_days = settings.UPCOMING_DEFAULT_DAYS if days is None else days
    return _projected(projector.upcoming(window_days=window_days, owner=user))


@app.get("/api/anniversaries/today", response_model=list[UpcomingAnniversaryResponse])
def todays_anniversaries(
    user: Annotated[str | None, Query()] = None,
    projector: AnniversaryProjector = Depends(get_projector),
) -> list[UpcomingAnniversaryResponse]:
    return _projected(projector.today(owner=user))


@app.get("/api/anniversaries/reminders", response_model=list[UpcomingAnniversaryResponse])
def anniversary_reminders(
    user: Annotated[str | None, Query()] = None,
    projector: AnniversaryProjector = Depends(get_projector),
) -> list[UpcomingAnniversaryResponse]:
    """Events within each event's own reminder_days."""
    return _projected(projector.reminders(owner=user))


@app.get("/api/anniversaries/{anniversary_id}", response_model=AnniversaryResponse)
def get_anniversary(anniversary_id: int, db: Session = Depends(get_db)) -> AnniversaryResponse:
    return AnniversaryResponse.model_validate(storage.get_anniversary(db, anniversary_id))


@app.put("/api/anniversaries/{anniversary_id}", response_model=AnniversaryResponse)
def update_anniversary(
    anniversary_id: int,
    payload: AnniversaryUpdate,
    db: Session = Depends(get_db),
) -> AnniversaryResponse:
    anniversary = storage.update_anniversary(db, anniversary_id, **payload.model_dump())
    return AnniversaryResponse.model_validate(anniversary)


@app.delete("/api/anniversaries/{anniversary_id}", response_model=DeleteResponse)
def delete_anniversary(anniversary_id: int, db: Session = Depends(get_db)) -> DeleteResponse:
    storage.delete_anniversary(db, anniversary_id)
    return DeleteResponse()


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
