"""Integration tests for API routes (routes.py + main.py)."""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fakes import FakeDevice, FakeDriver, FakeSession
from fastapi.testclient import TestClient

from flasher.models.firmware import BridgeFirmwareSource
from flasher.models.results import (
    ErrorKind,
    FlasherError,
    OperationResult,
    RecoveryChoice,
)
from flasher.models.status import Action, StageEnum
from flasher.services.state_manager import StateManager


# -----------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------

@pytest.fixture
def engine():
    """Engine stand-in: actions are recorded, never run."""
    engine = MagicMock()
    engine.state = StateManager()
    engine.cancel = AsyncMock(return_value=False)
    engine.close = AsyncMock()
    return engine


@pytest.fixture
def client(engine, fast_config):
    """TestClient running the lifespan with the engine and link patched out."""
    from flasher.main import app

    session = MagicMock()
    session.dispose = AsyncMock()

    with patch("flasher.main.setup_logger") as mock_log, \
         patch("flasher.main.load_config", return_value=fast_config), \
         patch("flasher.main.PySerialSession", return_value=session), \
         patch("flasher.main.FlasherEngine", return_value=engine):
        mock_log.return_value = MagicMock()
        with TestClient(app, raise_server_exceptions=True) as c:
            yield c


# -----------------------------------------------------------------------
# GET /api/v1.0/progress
# -----------------------------------------------------------------------

@pytest.mark.integration
class TestProgress:
    def test_idle_state_returns_200_code(self, client):
        response = client.get("/api/v1.0/progress")

        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 200
        assert body["data"]["stage"] == "idle"
        assert body["data"]["message"] == "Flasher ready"

    def test_running_action_is_reported(self, client, engine):
        engine.state.begin(Action.INSTALL, "Installing")
        engine.state.update_stage(StageEnum.CONNECTING, "Connecting")
        engine.state.update_stage(StageEnum.DOWNLOADING, "Downloading")
        engine.state.update_progress(45)

        body = client.get("/api/v1.0/progress").json()

        assert body["code"] == 200
        assert body["data"]["action"] == "install"
        assert body["data"]["stage"] == "downloading"
        assert body["data"]["progress"] == 45

    def test_failed_state_returns_code_500(self, client, engine):
        engine.state.begin(Action.INSTALL, "Installing")
        engine.state.finish(
            OperationResult.failed(FlasherError(ErrorKind.DIGEST_MISMATCH, "Checksum verification failed"))
        )

        body = client.get("/api/v1.0/progress").json()

        assert body["code"] == 500
        assert body["stage"] == "failed"
        assert "DIGEST_MISMATCH" in body["msg"]
        assert body["data"]["result"]["advice"] == "retry"


# -----------------------------------------------------------------------
# Action endpoints
# -----------------------------------------------------------------------

@pytest.mark.integration
class TestActions:
    @pytest.mark.parametrize(
        "endpoint, method",
        [
            ("/api/v1.0/diagnose", "diagnose"),
            ("/api/v1.0/install", "install_latest"),
            ("/api/v1.0/erase", "erase"),
        ],
    )
    def test_starts_action(self, client, engine, endpoint, method):
        response = client.post(endpoint)

        assert response.json()["code"] == 200
        getattr(engine, method).assert_called_once_with()
        engine.launch.assert_called_once()

    def test_busy_returns_409(self, client, engine):
        engine.launch.side_effect = FlasherError(ErrorKind.OPERATION_IN_PROGRESS)
        engine.state.begin(Action.ERASE, "Erasing")
        engine.state.update_stage(StageEnum.CONNECTING, "Connecting")

        body = client.post("/api/v1.0/diagnose").json()

        assert body["code"] == 409
        assert body["stage"] == "connecting"

    def test_update_missing_file_returns_404(self, client, engine, tmp_path):
        body = client.post("/api/v1.0/update", json={"path": str(tmp_path / "nope.gbl")}).json()

        assert body["code"] == 404
        engine.launch.assert_not_called()

    def test_update_existing_file(self, client, engine, tmp_path, gbl_bytes):
        firmware = tmp_path / "ZWA-2_7.23.1.gbl"
        firmware.write_bytes(gbl_bytes)

        body = client.post("/api/v1.0/update", json={"path": str(firmware)}).json()

        assert body["code"] == 200
        engine.update.assert_called_once_with(str(firmware))

    def test_update_requires_path(self, client):
        assert client.post("/api/v1.0/update", json={}).status_code == 422

    def test_recover_choice(self, client, engine):
        body = client.post("/api/v1.0/recover", json={"choice": "abort"}).json()

        assert body["code"] == 200
        engine.recover.assert_called_once_with(RecoveryChoice.ABORT, None)

    def test_recover_custom_without_path(self, client):
        assert client.post("/api/v1.0/recover", json={"choice": "custom"}).status_code == 422

    def test_bridge_update_with_version_check(self, client, engine):
        body = client.post(
            "/api/v1.0/bridge/update",
            json={"source": "manifest", "skip_if_version": "v1.2.0"},
        ).json()

        assert body["code"] == 200
        kwargs = engine.update_bridge.call_args.kwargs
        assert kwargs["source"] == BridgeFirmwareSource.MANIFEST
        assert kwargs["version_check"]("ZWA-2 bridge v1.1.0") is True
        assert kwargs["version_check"]("ZWA-2 bridge v1.2.0") is False

    def test_bridge_update_without_version_check(self, client, engine):
        client.post("/api/v1.0/bridge/update", json={})

        assert engine.update_bridge.call_args.kwargs["version_check"] is None

    def test_cancel(self, client, engine):
        engine.cancel.return_value = True

        body = client.post("/api/v1.0/cancel").json()

        assert body["data"] == {"cancelled": True}


# -----------------------------------------------------------------------
# Root and lifespan
# -----------------------------------------------------------------------

@pytest.mark.integration
class TestApp:
    def test_root_returns_ok(self, client):
        body = client.get("/").json()

        assert body["status"] == "ok"
        assert body["service"] == "adapter-flasher"

    def test_shutdown_closes_engine(self, engine, fast_config):
        from flasher.main import app

        session = MagicMock()
        session.dispose = AsyncMock()
        with patch("flasher.main.setup_logger"), \
             patch("flasher.main.load_config", return_value=fast_config), \
             patch("flasher.main.PySerialSession", return_value=session), \
             patch("flasher.main.FlasherEngine", return_value=engine):
            with TestClient(app):
                pass

        engine.close.assert_awaited_once()
        session.dispose.assert_awaited_once()


@pytest.mark.integration
class TestRealEngine:
    """Drive the real engine through the API against a fake adapter."""

    def test_diagnose_runs_to_completion(self, fast_config):
        from flasher.main import app

        device = FakeDevice()
        session = FakeSession(device)
        with patch("flasher.main.setup_logger"), \
             patch("flasher.main.load_config", return_value=fast_config), \
             patch("flasher.main.PySerialSession", return_value=session), \
             patch("flasher.main.build_driver_factory", return_value=lambda s: FakeDriver(device)):
            with TestClient(app) as c:
                assert c.post("/api/v1.0/diagnose").json()["code"] == 200

                for _ in range(100):
                    data = c.get("/api/v1.0/progress").json()["data"]
                    if data["stage"] in ("success", "failed"):
                        break
                    time.sleep(0.01)

        assert data["stage"] == "success"
        assert data["result"]["outcome"] == "NO_ISSUES"
