"""
Pytest fixtures for Tubely tests.
Provides a test database, test clients, fake media tools and object storage,
and sample data.

Uses a temporary SQLite database per test.
"""

import os
import shutil
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest
import sqlalchemy as sa
from databases import Database

# Set up test environment BEFORE importing config
os.environ["TUBELY_TEST_MODE"] = "1"
os.environ["TUBELY_RATE_LIMIT_ENABLED"] = "false"
os.environ["TUBELY_AUDIT_LOG_ENABLED"] = "false"

from api.auth import make_jwt  # noqa: E402
from api.database import metadata, videos  # noqa: E402
from api.object_storage import ObjectStorageError  # noqa: E402
from config import ApiConfig  # noqa: E402
from media.tools import MediaDimensions, ProbeError, TranscodeError, processed_path  # noqa: E402

TEST_JWT_SECRET = "test-secret-for-tubely-tests-only"
TEST_BUCKET = "tubely-test"
TEST_REGION = "us-east-2"
TEST_ASSETS_BASE_URL = "http://testserver/assets"

OWNER_ID = "user-owner"
OTHER_USER_ID = "user-other"

# Smallest bytes that pass as an MP4 upload; the fakes never parse them
SAMPLE_MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64
SAMPLE_PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _create_tables(db_url: str) -> None:
    """Create all tables in the test database."""
    engine = sa.create_engine(db_url)
    metadata.create_all(engine)
    engine.dispose()


def auth_headers(user_id: str = OWNER_ID, secret: str = TEST_JWT_SECRET, **kwargs) -> dict:
    """Authorization header carrying a freshly minted token."""
    return {"Authorization": f"Bearer {make_jwt(user_id, secret, **kwargs)}"}


def expired_auth_headers(user_id: str = OWNER_ID) -> dict:
    return auth_headers(user_id, expires_in=timedelta(seconds=-60))


def insert_video(db_url: str, user_id: str = OWNER_ID, **values) -> str:
    """Insert a video row directly and return its id."""
    video_id = values.pop("id", str(uuid.uuid4()))
    now = datetime.now(timezone.utc)
    row = {
        "id": video_id,
        "user_id": user_id,
        "title": "Test Video",
        "description": "A test video",
        "thumbnail_url": None,
        "video_url": None,
        "created_at": now,
        "updated_at": now,
    }
    row.update(values)
    engine = sa.create_engine(db_url)
    with engine.begin() as conn:
        conn.execute(videos.insert().values(**row))
    engine.dispose()
    return video_id


def fetch_video_row(db_url: str, video_id: str) -> Optional[dict]:
    """Read a video row directly, bypassing the API."""
    engine = sa.create_engine(db_url)
    with engine.connect() as conn:
        row = conn.execute(videos.select().where(videos.c.id == video_id)).first()
    engine.dispose()
    return dict(row._mapping) if row else None


class FakeMediaTools:
    """
    In-memory stand-in for ffprobe/ffmpeg.

    probe returns ``dimensions`` (or raises ProbeError when ``probe_error``
    is set); transcode copies the input to the processed path (or raises
    TranscodeError when ``transcode_error`` is set).
    """

    def __init__(
        self,
        dimensions: MediaDimensions = MediaDimensions(1920, 1080),
        probe_error: bool = False,
        transcode_error: bool = False,
    ):
        self.dimensions = dimensions
        self.probe_error = probe_error
        self.transcode_error = transcode_error
        self.probed: List[Path] = []
        self.transcoded: List[Path] = []

    async def probe(self, path: Path) -> MediaDimensions:
        self.probed.append(path)
        if self.probe_error:
            raise ProbeError("ffprobe exited with code 1")
        return self.dimensions

    async def transcode(self, path: Path) -> Path:
        self.transcoded.append(path)
        if self.transcode_error:
            raise TranscodeError("ffmpeg exited with code 1")
        output_path = processed_path(path)
        shutil.copyfile(path, output_path)
        return output_path


class FakeObjectStorage:
    """Records uploads instead of sending them anywhere."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.puts: List[dict] = []

    async def put_object(self, key: str, path: Path, content_type: str) -> None:
        self.puts.append(
            {
                "key": key,
                "path": path,
                "content_type": content_type,
                "data": path.read_bytes(),
            }
        )
        if self.error is not None:
            raise self.error


@pytest.fixture(scope="function")
def test_db_url(tmp_path: Path) -> str:
    """Create a SQLite test database with all tables and return its URL."""
    db_url = f"sqlite:///{tmp_path / 'tubely_test.db'}"
    _create_tables(db_url)
    return db_url


@pytest.fixture
async def test_database(test_db_url: str):
    """Connected database for store-level tests."""
    database = Database(test_db_url)
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
def assets_root(tmp_path: Path) -> Path:
    path = tmp_path / "assets"
    path.mkdir()
    return path


@pytest.fixture
def api_config(test_db_url: str, assets_root: Path) -> ApiConfig:
    return ApiConfig(
        assets_root=assets_root,
        jwt_secret=TEST_JWT_SECRET,
        database_url=test_db_url,
        assets_base_url=TEST_ASSETS_BASE_URL,
        s3_bucket=TEST_BUCKET,
        s3_region=TEST_REGION,
    )


@pytest.fixture
def media_tools() -> FakeMediaTools:
    return FakeMediaTools()


@pytest.fixture
def object_storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def make_client(api_config, media_tools, object_storage):
    """
    Factory for TestClients over the real app with fake collaborators.

    Keyword arguments override ApiConfig fields. Clients are closed (and the
    app's lifespan finished) at teardown.
    """
    from fastapi.testclient import TestClient

    from api.server import create_app

    clients = []

    def _make(storage=None, tools=None, **config_overrides):
        cfg = replace(api_config, **config_overrides) if config_overrides else api_config
        app = create_app(
            cfg,
            storage=storage if storage is not None else object_storage,
            media_tools=tools if tools is not None else media_tools,
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def owned_video(test_db_url: str) -> str:
    """A video owned by OWNER_ID with no thumbnail or video yet."""
    return insert_video(test_db_url, OWNER_ID, title="Owned Video")


@pytest.fixture
def failing_storage() -> FakeObjectStorage:
    return FakeObjectStorage(error=ObjectStorageError("bucket unavailable"))
