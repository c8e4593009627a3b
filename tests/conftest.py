"""
Pytest fixtures for Vixora tests.
Provides a throwaway SQLite database, a VideoStore, a fake asset store and
sample rows.
"""

import json
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, Dict

import httpx
import pytest
import sqlalchemy as sa
from databases import Database

# Set up the environment BEFORE importing config
_test_temp_dir = tempfile.mkdtemp()
os.environ["VIXORA_TEST_MODE"] = "1"
os.environ["VIXORA_DATABASE_URL"] = f"sqlite:///{Path(_test_temp_dir) / 'import.db'}"
os.environ["VIXORA_REDIS_URL"] = ""
os.environ["VIXORA_QUEUE_URL"] = "memory://"
os.environ["VIXORA_RATE_LIMIT_ENABLED"] = "false"
os.environ["VIXORA_RUN_WORKER"] = "false"
os.environ["VIXORA_RUN_WORKER_ON_DEMAND"] = "false"
os.environ["VIXORA_RUN_CLEANUP_SCHEDULER"] = "false"

from api.asset_store import AssetStore  # noqa: E402
from api.database import configure_database, create_tables, users, videos  # noqa: E402
from api.enums import ProcessingStatus  # noqa: E402
from api.video_store import VideoStore  # noqa: E402

SOURCE_URL = "https://res.cloudinary.com/demo/video/upload/v1/videos/user-1/clip.mp4"
THUMB_URL = "https://res.cloudinary.com/demo/image/upload/v1/thumbnails/user-1/cover.jpg"


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """Create a fresh SQLite database file with all tables."""
    url = f"sqlite:///{tmp_path / 'vixora_test.db'}"
    create_tables(url)
    return url


@pytest.fixture
async def test_database(db_url: str) -> AsyncGenerator[Database, None]:
    database = Database(db_url)
    await database.connect()
    await configure_database(database)
    yield database
    await database.disconnect()


@pytest.fixture
async def store(test_database: Database) -> VideoStore:
    return VideoStore(test_database)


@pytest.fixture
async def owner(store: VideoStore) -> dict:
    await store.create_user("user-1", "creator", full_name="Creator One", avatar="https://cdn.example/a.png")
    return await store.get_user("user-1")


@pytest.fixture
async def viewer(store: VideoStore) -> dict:
    await store.create_user("user-2", "viewer")
    return await store.get_user("user-2")


async def insert_video(database: Database, owner_id: str = "user-1", **overrides) -> str:
    """Insert a video row directly, defaulting to a fully processed public video."""
    now = datetime.now(timezone.utc)
    values = {
        "id": uuid.uuid4().hex,
        "owner_id": owner_id,
        "title": "Test Video",
        "description": "A test video description",
        "duration": 120,
        "source_width": 1920,
        "source_height": 1080,
        "is_short": False,
        "aspect_ratio": "1920:1080",
        "video_file": SOURCE_URL,
        "video_public_id": "videos/user-1/clip",
        "thumbnail": THUMB_URL,
        "thumbnail_public_id": "thumbnails/user-1/cover",
        "playback_url": None,
        "master_playlist_url": None,
        "available_qualities": None,
        "processing_status": ProcessingStatus.COMPLETED.value,
        "processing_progress": 100,
        "is_published": True,
        "is_hls_ready": True,
        "is_deleted": False,
        "deleted_at": None,
        "views": 0,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    await database.execute(videos.insert().values(**values))
    return values["id"]


@pytest.fixture
async def sample_video(test_database: Database, owner: dict) -> str:
    """A published, processed video owned by user-1."""
    return await insert_video(test_database)


@pytest.fixture
async def pending_video(test_database: Database, owner: dict) -> str:
    """A freshly published video waiting for processing."""
    return await insert_video(
        test_database,
        thumbnail=None,
        thumbnail_public_id=None,
        processing_status=ProcessingStatus.PENDING.value,
        processing_progress=0,
        is_published=False,
        is_hls_ready=False,
    )


def seed_user(url: str, user_id: str, username: str) -> None:
    """Insert a user through a synchronous engine (for app-level tests)."""
    engine = sa.create_engine(url)
    with engine.begin() as conn:
        conn.execute(users.insert().values(id=user_id, username=username, created_at=datetime.now(timezone.utc)))
    engine.dispose()


def fetch_video_row(url: str, video_id: str) -> dict:
    engine = sa.create_engine(url)
    with engine.connect() as conn:
        row = conn.execute(videos.select().where(videos.c.id == video_id)).first()
    engine.dispose()
    return dict(row._mapping) if row else None


class FakeCloudinary:
    """
    In-memory stand-in for the asset store HTTP API, served through
    httpx.MockTransport.
    """

    def __init__(self):
        self.resources: Dict[tuple, dict] = {}
        self.destroyed = []
        self.destroy_results: Dict[str, str] = {}
        self.requests = []
        self.outage_status = None

    def add(self, kind: str, public_id: str, **extra) -> dict:
        resource = {
            "public_id": public_id,
            "resource_type": kind,
            "secure_url": f"https://res.cloudinary.com/demo/{kind}/upload/v1/{public_id}.{'mp4' if kind == 'video' else 'jpg'}",
            **extra,
        }
        self.resources[(kind, public_id)] = resource
        return resource

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.outage_status is not None:
            return httpx.Response(self.outage_status, text="service unavailable")
        path = request.url.path
        if request.method == "GET" and "/resources/" in path:
            # /v1_1/{cloud}/resources/{kind}/upload/{public_id}
            _, rest = path.split("/resources/", 1)
            kind, _, public_id = rest.split("/", 2)
            resource = self.resources.get((kind, public_id))
            if resource is None:
                return httpx.Response(404, json={"error": {"message": f"Resource not found - {public_id}"}})
            return httpx.Response(200, json=resource)
        if request.method == "POST" and path.endswith("/destroy"):
            kind = path.rstrip("/").split("/")[-2]
            form = dict(httpx.QueryParams(request.content.decode()))
            public_id = form.get("public_id")
            self.destroyed.append((kind, public_id))
            result = self.destroy_results.get(public_id, "ok")
            return httpx.Response(200, content=json.dumps({"result": result}))
        return httpx.Response(400, json={"error": {"message": "unexpected request"}})

    def client(self, max_retries: int = 0) -> AssetStore:
        return AssetStore(
            "demo",
            "key",
            "secret",
            max_retries=max_retries,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def cloudinary() -> FakeCloudinary:
    return FakeCloudinary()


@pytest.fixture
async def assets(cloudinary: FakeCloudinary) -> AsyncGenerator[AssetStore, None]:
    client = cloudinary.client()
    yield client
    await client.close()


class FakeClock:
    """Controllable time source (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

