from __future__ import annotations

from typing import Iterator

from fastapi import Request

from .database import get_db
from .storage import MemoryStorage, SqlStorage, Storage


def get_storage(request: Request) -> Iterator[Storage]:
    """Storage for the current request.

    ``app.state.memory_storage`` is set when the app runs with the in-memory
    backend and no database session is opened. Otherwise every request works
    on its own session from ``get_db`` (or its override).
    """
    memory: MemoryStorage | None = getattr(request.app.state, "memory_storage", None)
    if memory is not None:
        yield memory
        return
    provider = request.app.dependency_overrides.get(get_db, get_db)
    sessions = provider()
    db = next(sessions)
    try:
        yield SqlStorage(db)
    finally:
        sessions.close()
