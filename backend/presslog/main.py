from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models
from .auth import get_current_user
from .config import settings
from .database import engine
from .dependencies import get_storage
from .middleware import RequestLogMiddleware
from .models import User
from .schemas import (
    ClearArchivedResponse,
    EnhancedTimerResponse,
    HistoryEntryResponse,
    HistoryStatsResponse,
    HistoryUpdateRequest,
    HistoryUpdateResponse,
    LedgerActionResponse,
    PressRequest,
    PressResponse,
    TimerCreateRequest,
    TimerResponse,
    TimerStatsResponse,
    TimerUpdateRequest,
    UserCreateRequest,
    UserCreatedResponse,
    UserResponse,
    UserUpdateRequest,
)
from .services import (
    archive_timer,
    clear_archived_timers,
    create_timer,
    delete_history_entry,
    delete_timer,
    get_enhanced_timer,
    history_by_range,
    history_stats,
    list_archived_timers,
    list_enhanced_timers,
    list_timer_history,
    parse_range,
    press_timer,
    redo_press,
    register_user,
    restore_timer,
    timer_stats,
    undo_press,
    update_history_entry,
    update_timer,
    update_user,
)
from .storage import MemoryStorage, Storage

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


if settings.storage_backend == "sqlite":
    models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
app.state.memory_storage = MemoryStorage() if settings.storage_backend == "memory" else None
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"detail": "Internal server error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------
@app.post("/api/users", response_model=UserCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_user_account(payload: UserCreateRequest, storage: Storage = Depends(get_storage)) -> UserCreatedResponse:
    user, token = register_user(storage, payload.username, payload.day_start_hour)
    return UserCreatedResponse(user=UserResponse.model_validate(user), token=token)


@app.get("/api/user", response_model=UserResponse)
def current_user(user: User = Depends(get_current_user)) -> User:
    return user


@app.patch("/api/user", response_model=UserResponse)
def patch_current_user(
    payload: UserUpdateRequest,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> User:
    return update_user(storage, user, payload.model_dump(exclude_unset=True))


# ----------------------------------------------------------------------
# Timers
# ----------------------------------------------------------------------
@app.get("/api/timers", response_model=list[EnhancedTimerResponse])
def get_timers(
    include_archived: bool = Query(False, alias="includeArchived"),
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> list[EnhancedTimerResponse]:
    return list_enhanced_timers(storage, user, include_archived)


@app.get("/api/timers/archived", response_model=list[EnhancedTimerResponse])
def get_archived_timers(
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> list[EnhancedTimerResponse]:
    return list_archived_timers(storage, user)


@app.delete("/api/timers/archived", response_model=ClearArchivedResponse)
def clear_archived(
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> ClearArchivedResponse:
    count = clear_archived_timers(storage, user)
    return ClearArchivedResponse(message=f"{count} archived timers deleted successfully", deleted=count)


@app.get("/api/timers/{timer_id}", response_model=EnhancedTimerResponse)
def get_timer(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> EnhancedTimerResponse:
    return get_enhanced_timer(storage, user, timer_id)


@app.post("/api/timers", response_model=TimerResponse, status_code=status.HTTP_201_CREATED)
def post_timer(
    payload: TimerCreateRequest,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> TimerResponse:
    return create_timer(storage, user, payload.model_dump())


@app.patch("/api/timers/{timer_id}", response_model=TimerResponse)
def patch_timer(
    timer_id: int,
    payload: TimerUpdateRequest,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> TimerResponse:
    changes = payload.model_dump(exclude_unset=True)
    return update_timer(storage, user, timer_id, changes)


@app.post("/api/timers/{timer_id}/archive", response_model=TimerResponse)
def post_archive_timer(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> TimerResponse:
    return archive_timer(storage, user, timer_id)


@app.post("/api/timers/{timer_id}/restore", response_model=TimerResponse)
def post_restore_timer(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> TimerResponse:
    return restore_timer(storage, user, timer_id)


@app.delete("/api/timers/{timer_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_timer(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> Response:
    delete_timer(storage, user, timer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# Presses, undo and redo
# ----------------------------------------------------------------------
@app.post("/api/timers/{timer_id}/press", response_model=PressResponse, status_code=status.HTTP_201_CREATED)
def post_press(
    timer_id: int,
    payload: PressRequest | None = None,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> PressResponse:
    return press_timer(storage, user, timer_id, payload.timestamp if payload else None)


@app.post("/api/timers/{timer_id}/undo", response_model=LedgerActionResponse)
def post_undo(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> LedgerActionResponse:
    return undo_press(storage, user, timer_id)


@app.post("/api/timers/{timer_id}/redo", response_model=LedgerActionResponse)
def post_redo(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> LedgerActionResponse:
    return redo_press(storage, user, timer_id)


@app.get("/api/timers/{timer_id}/history", response_model=list[HistoryEntryResponse])
def get_timer_history(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> list[HistoryEntryResponse]:
    return list_timer_history(storage, user, timer_id)


@app.get("/api/timers/{timer_id}/stats", response_model=TimerStatsResponse)
def get_timer_stats(
    timer_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> TimerStatsResponse:
    return timer_stats(storage, user, timer_id)


@app.patch("/api/history/{entry_id}", response_model=HistoryUpdateResponse)
def patch_history(
    entry_id: int,
    payload: HistoryUpdateRequest,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> HistoryUpdateResponse:
    return update_history_entry(storage, user, entry_id, payload.is_active, payload.timestamp)


@app.delete("/api/history/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_history(
    entry_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> Response:
    delete_history_entry(storage, user, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/history", response_model=list[HistoryEntryResponse])
def get_history_range(
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> list[HistoryEntryResponse]:
    start, end = parse_range(start_date, end_date)
    return history_by_range(storage, user, start, end)


@app.get("/api/stats", response_model=HistoryStatsResponse)
def get_history_stats(
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    period: str = Query("daily"),
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> HistoryStatsResponse:
    start, end = parse_range(start_date, end_date)
    return history_stats(storage, user, start, end, period)
