"""Tests for the video recovery API."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from aivideo.api.routes_videos import get_lifecycle_manager
from aivideo.core.errors import InvalidTransitionError, SceneNotFoundError
from aivideo.main import app
from aivideo.models.schemas import (
    Checkpoint,
    CheckpointStatus,
    FailedSceneInfo,
    FailedScenesRetryResponse,
    FailedStep,
    ProcessResumeResponse,
    SceneRegenerateResponse,
    SceneType,
)


@pytest.fixture
def manager():
    mock = MagicMock()
    mock.repository.list_scenes.return_value = [MagicMock()]
    return mock


@pytest.fixture
def client(manager):
    app.dependency_overrides[get_lifecycle_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_checkpoint_uses_camel_case(client, manager):
    manager.get_checkpoint.return_value = Checkpoint(
        video_id="v1",
        status=CheckpointStatus.FAILED,
        total_count=3,
        completed_count=2,
        failed_count=1,
        completed_scene_ids=["v1-s00", "v1-s02"],
        failed_scene_ids=["v1-s01"],
        can_resume=True,
    )

    response = client.get("/videos/v1/checkpoint")

    assert response.status_code == 200
    body = response.json()
    assert body["videoId"] == "v1"
    assert body["failedSceneIds"] == ["v1-s01"]
    assert body["canResume"] is True


def test_unknown_video_is_404(client, manager):
    manager.repository.list_scenes.return_value = []

    assert client.get("/videos/nope/checkpoint").status_code == 404
    assert client.post("/videos/nope/resume", json={}).status_code == 404


def test_failed_scenes(client, manager):
    manager.list_failed_scenes.return_value = [
        FailedSceneInfo(
            scene_id="v1-s01",
            scene_order=1,
            scene_type=SceneType.SLIDE,
            failed_at=FailedStep.TTS,
            error_message="tts failed",
            retry_count=2,
        )
    ]

    response = client.get("/videos/v1/failed-scenes")

    assert response.status_code == 200
    assert response.json()[0]["failed_at"] == "TTS"


def test_regenerate_takes_scene_from_path(client, manager):
    """Test the path scene id and request headers reach the manager."""
    manager.regenerate_scene.return_value = SceneRegenerateResponse(
        video_id="v1", scene_id="v1-s02", status="processing", message="Regeneration started"
    )

    response = client.post(
        "/videos/v1/scenes/v1-s02/regenerate",
        json={"user_feedback": "more light", "media_only": True},
        headers={"X-Api-Key": "user-key", "X-Creator-Id": "creator-7"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "processing"
    video_id, request, context = manager.regenerate_scene.call_args[0]
    assert video_id == "v1"
    assert request.scene_id == "v1-s02"
    assert request.media_only is True
    assert context.api_key == "user-key"
    assert context.creator_id == "creator-7"
    assert callable(manager.regenerate_scene.call_args[1]["schedule"])


def test_regenerate_errors_map_to_status_codes(client, manager):
    manager.regenerate_scene.side_effect = SceneNotFoundError("Scene not found: v1/x")
    assert client.post("/videos/v1/scenes/x/regenerate", json={}).status_code == 404

    manager.regenerate_scene.side_effect = InvalidTransitionError("v1-s01", "GENERATING", "REGENERATING")
    assert client.post("/videos/v1/scenes/v1-s01/regenerate", json={}).status_code == 409


def test_retry_failed(client, manager):
    manager.retry_failed_scenes.return_value = FailedScenesRetryResponse(
        video_id="v1", status="processing", total_failed_count=2, retrying_count=2
    )

    response = client.post("/videos/v1/retry-failed", json={"scene_ids": ["v1-s01"], "retry_media_only": False})

    assert response.status_code == 200
    assert response.json()["retrying_count"] == 2
    request = manager.retry_failed_scenes.call_args[0][1]
    assert request.scene_ids == ["v1-s01"]
    assert request.retry_media_only is False


def test_resume(client, manager):
    manager.resume.return_value = ProcessResumeResponse(
        video_id="v1", status="processing", resumed_from_index=3, remaining_count=4
    )

    response = client.post("/videos/v1/resume", json={"skip_failed": True})

    assert response.status_code == 200
    assert response.json()["resumed_from_index"] == 3
    assert manager.resume.call_args[0][1].skip_failed is True


def test_cancel(client, manager):
    manager.cancel.return_value = 2

    response = client.post("/videos/v1/cancel")

    assert response.json() == {"video_id": "v1", "status": "cancelled", "cancelled_count": 2}
