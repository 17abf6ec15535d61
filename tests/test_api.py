"""Tests for the HTTP API."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from testlog.api.deps import get_storage
from testlog.main import app
from testlog.models.database import get_db
from testlog.services.audio_sync_service import AudioOffsetEstimator, SyncEstimate, SyncMethod
from testlog.utils.media_info import MediaInfo


@pytest.fixture
def client(db_session, storage, monkeypatch):
    def _get_db():
        yield db_session

    info = MediaInfo(duration_seconds=10.0, width=1920, height=1080, fps=30.0, has_video=True)
    monkeypatch.setattr("testlog.services.metadata_probe.get_media_info", lambda path: info)

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def picked(tmp_path, write_file):
    folder = tmp_path / "picked"
    return [
        str(write_file(folder / "anchor.mov", b"anchor")),
        str(write_file(folder / "equipment.mov", b"equipment")),
    ]


def _create(client, test_id="PT-1") -> dict:
    response = client.post(
        "/api/tests", json={"test_id": test_id, "product_name": "Anchor", "adhesive_name": "Epoxy-A"}
    )
    assert response.status_code == 201
    return response.json()


class TestTestsApi:
    """Tests for test and asset endpoints."""

    def test_health(self, client):
        """Test the health check."""
        assert client.get("/health").json()["status"] == "healthy"

    def test_create_and_list(self, client):
        """Test creating and listing tests."""
        created = _create(client)

        assert created["test_id"] == "PT-1"
        assert created["peak_force_lbs"] is None
        listed = client.get("/api/tests").json()
        assert [t["id"] for t in listed] == [created["id"]]
        assert client.get("/api/tests/PT-1").json()["id"] == created["id"]

    def test_unknown_test(self, client):
        """Test the error envelope for an unknown test."""
        response = client.get("/api/tests/missing/assets")

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "TEST_NOT_FOUND"
        assert error["retryable"] is False

    def test_import_and_delete(self, client, picked, storage):
        """Test importing videos and deleting one."""
        test = _create(client)

        response = client.post(
            f"/api/tests/{test['id']}/assets/import", json={"files": [{"path": p} for p in picked]}
        )

        assert response.status_code == 201
        assets = response.json()
        assert [a["video_role"] for a in assets] == ["anchor_view", "equipment_view"]
        assert all(storage.file_exists(a["relative_path"]) for a in assets)

        response = client.delete(f"/api/tests/{test['id']}/assets/{assets[0]['id']}")
        assert response.status_code == 204
        assert len(client.get(f"/api/tests/{test['id']}/assets").json()) == 1
        assert not storage.file_exists(assets[0]["relative_path"])

    def test_import_policy_violation(self, client, picked, tmp_path, write_file):
        """Test importing too many videos."""
        test = _create(client)
        third = str(write_file(tmp_path / "third.mov", b"third"))

        response = client.post(
            f"/api/tests/{test['id']}/assets/import",
            json={"files": [{"path": p} for p in [*picked, third]]},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "TOO_MANY_VIDEOS"

    def test_import_explicit_duplicate_role(self, client, picked):
        """Test importing two videos with the same role."""
        test = _create(client)
        files = [{"path": p, "video_role": "anchor_view"} for p in picked]

        response = client.post(f"/api/tests/{test['id']}/assets/import", json={"files": files})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "DUPLICATE_VIDEO_ROLE"

    def test_import_missing_source(self, client, tmp_path):
        """Test importing a missing file."""
        test = _create(client)
        response = client.post(
            f"/api/tests/{test['id']}/assets/import",
            json={"files": [{"path": str(tmp_path / "nope.mov")}]},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "ASSET_NOT_READABLE"

    def test_delete_unknown_asset(self, client):
        """Test deleting an unknown asset."""
        test = _create(client)
        response = client.delete(f"/api/tests/{test['id']}/assets/missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ASSET_NOT_FOUND"


class TestSyncApi:
    """Tests for sync configuration endpoints."""

    @pytest.fixture
    def imported(self, client, picked):
        test = _create(client)
        client.post(
            f"/api/tests/{test['id']}/assets/import", json={"files": [{"path": p} for p in picked]}
        )
        return test

    def test_defaults_are_selected(self, client, imported):
        """Test default video selection."""
        assets = client.get(f"/api/tests/{imported['id']}/assets").json()
        sync = client.get(f"/api/tests/{imported['id']}/sync").json()

        assert sync["primary_asset_id"] == assets[0]["id"]
        assert sync["equipment_asset_id"] == assets[1]["id"]
        assert sync["effective_offset"] == 0.0
        assert sync["equipment_crop"] == {"x": 0.0, "y": 0.0, "width": 1.0, "height": 1.0}

    def test_update(self, client, imported):
        """Test a partial sync update."""
        response = client.put(
            f"/api/tests/{imported['id']}/sync",
            json={
                "manual_offset_seconds": 0.4,
                "trim_in_seconds": 1.0,
                "trim_out_seconds": 6.0,
                "equipment_rotation_quarter_turns": 5,
                "equipment_crop": {"x": 0.9, "y": 0.0, "width": 0.5, "height": 1.0},
            },
        )

        assert response.status_code == 200
        sync = response.json()
        assert sync["effective_offset"] == pytest.approx(0.4)
        assert sync["equipment_rotation_quarter_turns"] == 1
        assert sync["equipment_crop"]["x"] == pytest.approx(0.5)
        assert (sync["trim_in_seconds"], sync["trim_out_seconds"]) == (1.0, 6.0)

    def test_inverted_trim(self, client, imported):
        """Test rejecting an inverted trim range."""
        response = client.put(
            f"/api/tests/{imported['id']}/sync", json={"trim_in_seconds": 5.0, "trim_out_seconds": 2.0}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TRIM_RANGE"

    def test_plan_requires_trim(self, client, imported):
        """Test planning without a trim range."""
        client.get(f"/api/tests/{imported['id']}/sync")
        response = client.post(f"/api/tests/{imported['id']}/sync/plan")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "TRIM_RANGE_REQUIRED"

    def test_plan(self, client, imported):
        """Test the composition plan endpoint."""
        client.put(
            f"/api/tests/{imported['id']}/sync",
            json={"trim_in_seconds": 1.0, "trim_out_seconds": 6.0, "manual_offset_seconds": 2.0},
        )
        client.get(f"/api/tests/{imported['id']}/sync")

        plan = client.post(f"/api/tests/{imported['id']}/sync/plan").json()

        assert plan["duration"] == pytest.approx(5.0)
        assert [t["name"] for t in plan["tracks"]] == ["primary", "equipment"]
        assert plan["tracks"][1]["source_start"] == pytest.approx(3.0)

    def test_detect(self, client, imported):
        """Test offset detection through the API."""
        estimate = SyncEstimate(0.6, 0.9, SyncMethod.AUDIO)
        with patch.object(AudioOffsetEstimator, "detect_offset", AsyncMock(return_value=estimate)):
            response = client.post(f"/api/tests/{imported['id']}/sync/detect")

        assert response.status_code == 200
        body = response.json()
        assert body["method"] == "audio"
        assert body["sync"]["auto_offset_seconds"] == pytest.approx(0.6)
        assert body["sync"]["last_synced_at"] is not None


class TestMaintenanceApi:
    """Tests for maintenance endpoints."""

    def test_repair_media(self, client, storage, write_file):
        """Test the storage repair endpoint."""
        _create(client)
        write_file(storage.absolute_path("PT-1/x/photo.jpg"))

        response = client.post("/api/maintenance/repair-media")

        assert response.status_code == 200
        report = response.json()
        assert report["created_missing_assets"] == 1
        assert "Created missing asset records: 1" in report["summary"]
