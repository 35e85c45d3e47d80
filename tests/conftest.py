from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.database import Base, get_db, get_session_factory
from app.dependencies import (
    get_id_generator,
    get_media_probe,
    get_storage,
    get_thumbnail_generator,
    get_watch_engine,
)
from app.ids import IdGenerator
from app.main import app
from app.models.user import User
from app.services.media import THUMBNAIL_FILENAME, MediaToolError, ProbeResult, UnsupportedFormatError
from app.services.video_storage import VideoStorage
from app.services.watch_integrity import WatchIntegrityEngine


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProbe:
    """Content starting with BAD is an unsupported format, CRASH is a tool failure."""

    def __init__(self, duration_secs: int = 100, mime_type: str = "video/mp4"):
        self.duration_secs = duration_secs
        self.mime_type = mime_type
        self.calls: list[Path] = []
        self.on_call = None

    async def probe(self, path: Path) -> ProbeResult:
        self.calls.append(path)
        if self.on_call:
            self.on_call()
        head = path.read_bytes()[:5]
        if head.startswith(b"BAD"):
            raise UnsupportedFormatError("not a video")
        if head.startswith(b"CRASH"):
            raise MediaToolError("ffprobe crashed")
        return ProbeResult(mime_type=self.mime_type, duration_secs=self.duration_secs)


class FakeThumbnails:
    def __init__(self):
        self.fail = False
        self.on_call = None

    async def generate(self, source: Path) -> Path:
        if self.on_call:
            self.on_call()
        if self.fail:
            raise MediaToolError("ffmpeg crashed")
        target = source.parent / THUMBNAIL_FILENAME
        target.write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
        return target


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def ids() -> IdGenerator:
    return IdGenerator(node=7)


@pytest.fixture
def storage(tmp_path) -> VideoStorage:
    return VideoStorage(tmp_path / "data")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def thumbnails() -> FakeThumbnails:
    return FakeThumbnails()


@pytest.fixture
def make_user(db, ids):
    def _make(username: str = "alice") -> User:
        user = User(id=ids.new_id(), username=username, email=f"{username}@example.com", password="x")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def client(session_factory, storage, probe, thumbnails, clock, ids):
    def get_db_override():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def get_watch_engine_override(db: Session = Depends(get_db)):
        return WatchIntegrityEngine(db, ids, threshold=0.6, clock=clock)

    app.dependency_overrides[get_db] = get_db_override
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_media_probe] = lambda: probe
    app.dependency_overrides[get_thumbnail_generator] = lambda: thumbnails
    app.dependency_overrides[get_id_generator] = lambda: ids
    app.dependency_overrides[get_watch_engine] = get_watch_engine_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    """Register + login; returns Authorization headers for the given username."""

    def _headers(username: str = "alice") -> dict:
        res = client.post(
            "/api/auth/register",
            json={"username": username, "email": f"{username}@example.com", "password": "secret123"},
        )
        assert res.status_code == 201, res.text
        res = client.post("/api/auth/login", json={"username": username, "password": "secret123"})
        assert res.status_code == 200, res.text
        return {"Authorization": f"Bearer {res.json()['access_token']}"}

    return _headers
