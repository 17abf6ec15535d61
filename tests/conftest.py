"""
Pytest fixtures for testlog tests.

Most tests run against a temporary media root and an in-memory SQLite
database. Tests that shell out to ffmpeg/ffprobe are marked with
@pytest.mark.requires_ffmpeg and skipped when the binaries are missing.
"""

import shutil
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import testlog.models  # noqa: F401  registers every mapper
from testlog.config import Settings
from testlog.models.asset import MediaAsset
from testlog.models.base import Base
from testlog.models.enums import AssetType
from testlog.models.pull_test import PullTest
from testlog.services.storage_service import ManagedStorageService


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg and ffprobe on PATH",
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe not installed",
)


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def settings(media_root: Path) -> Settings:
    return Settings(media_root=str(media_root), database_url="sqlite://", _env_file=None)


@pytest.fixture
def storage(media_root: Path) -> ManagedStorageService:
    return ManagedStorageService(media_root)


@pytest.fixture
def db_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def make_test(db_session: Session):
    """Factory persisting a PullTest."""

    def _make(test_id: str = "PT-001", **kwargs) -> PullTest:
        test = PullTest(test_id=test_id, **kwargs)
        db_session.add(test)
        db_session.commit()
        return test

    return _make


@pytest.fixture
def write_file():
    """Write bytes to a path, creating parent directories."""

    def _write(path: Path, data: bytes = b"data") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    return _write


@pytest.fixture
def add_video(db_session: Session, storage: ManagedStorageService, write_file):
    """Attach a stored video record to a test."""

    def _add(
        test: PullTest,
        filename: str = "clip.mov",
        role: str | None = None,
        width: int = 1920,
        height: int = 1080,
        data: bytes = b"video",
    ) -> MediaAsset:
        asset = MediaAsset(
            pull_test_id=test.id,
            asset_type=AssetType.VIDEO.value,
            filename=filename,
            relative_path="",
            pixel_width=width,
            pixel_height=height,
        )
        asset.relative_path = f"{test.storage_key}/{asset.id}/{filename}"
        if role is not None:
            asset.video_role = role
        write_file(storage.absolute_path(asset.relative_path), data)
        test.assets.append(asset)
        db_session.commit()
        return asset

    return _add
