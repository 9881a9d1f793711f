from __future__ import annotations

import datetime as dt
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from presslog import models
from presslog.database import get_db
from presslog.main import app
from presslog.storage import MemoryStorage, SqlStorage


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def memory_client() -> Generator[TestClient, None, None]:
    previous = app.state.memory_storage
    app.state.memory_storage = MemoryStorage()
    with TestClient(app) as c:
        yield c
    app.state.memory_storage = previous


@pytest.fixture(params=["sql", "memory"])
def storage(request, session: Session):
    if request.param == "sql":
        return SqlStorage(session)
    return MemoryStorage()


def register(client: TestClient, username: str) -> Dict[str, str]:
    response = client.post("/api/users", json={"username": username})
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture()
def register_user():
    return register


@pytest.fixture()
def auth_headers(client: TestClient) -> Dict[str, str]:
    return register(client, "alice")


@pytest.fixture()
def other_headers(client: TestClient) -> Dict[str, str]:
    return register(client, "bob")


@pytest.fixture()
def now() -> dt.datetime:
    return dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)
