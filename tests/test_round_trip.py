"""End-to-end: desktop client components against an in-process server."""

import io
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from chronometry.config import ServerSettings
from chronometry.controller import TimerController
from chronometry.server import ServerContext, create_app
from chronometry.sync.api_client import ChronometryClient
from chronometry.sync.http_client import AuthError
from chronometry.sync.models import parse_timestamp
from chronometry.sync.reconciler import SyncReconciler
from chronometry.sync.store import LocalStore


def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), "blue").save(buffer, format="PNG")
    return buffer.getvalue()


class TestClientServerRoundTrip:
    """ChronometryClient talking to the FastAPI app through TestClient."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.context = ServerContext.from_settings(
            ServerSettings(db_path=self.temp_dir / "server.db")
        )
        self.http = TestClient(create_app(self.context))
        self.on_auth_failure = Mock()
        self.client = ChronometryClient(
            api_url="http://testserver",
            session=self.http,
            on_auth_failure=self.on_auth_failure,
        )
        self.store = LocalStore(db_path=self.temp_dir / "client.db")

        assert self.client.register("anna", "secret", "Anna").success
        result = self.client.login("anna", "secret")
        assert result.success
        self.user = result.user

        response = self.http.post(
            "/api/admin/processes",
            headers={"Authorization": f"Bearer {self.client.token}"},
            json={
                "name": "Receiving",
                "isSequential": True,
                "steps": [
                    {"name": "Unload"},
                    {"name": "Check note", "requiresPhoto": True},
                ],
            },
        )
        assert response.status_code == 200
        self.process_id = response.json()["id"]

        self.now = datetime.now(timezone.utc) - timedelta(minutes=5)
        self.controller = TimerController(
            self.store,
            api=self.client,
            is_online=lambda: True,
            clock=lambda: self.now,
        )
        self.reconciler = SyncReconciler(self.client, self.store)

    def teardown_method(self):
        """Clean up."""
        self.store.close()
        self.http.close()
        self.context.close()

    def test_login_returns_user(self):
        assert self.user.username == "anna"
        assert self.user.first_name == "Anna"
        assert self.user.is_admin
        assert self.client.me() == self.user

    def test_pending_account_reported(self):
        assert self.client.register("bob", "secret").success

        result = ChronometryClient(api_url="http://testserver", session=self.http).login("bob", "secret")

        assert result.success is False
        assert result.status == "pending"

    def test_offline_record_reaches_server(self):
        self.controller.set_user(self.user)
        processes = self.controller.refresh_processes()
        assert [p.name for p in processes] == ["Receiving"]

        record = self.controller.start(self.process_id)
        self.controller.complete_step()
        self.controller.add_photo(png_bytes())
        self.controller.complete_step()
        self.now += timedelta(seconds=95)
        self.controller.request_stop()
        self.controller.confirm_stop("pallets ok")

        stats = self.reconciler.sync(self.user.id)

        assert stats.records_pushed == 1
        assert stats.photos_uploaded == 1
        local = self.store.get_record(record.id)
        assert local.synced is True

        remote = self.context.db.get_record(local.server_id)
        assert remote["duration"] == 95
        assert remote["comment"] == "pallets ok"
        assert parse_timestamp(remote["start_time"]) == local.start_time
        assert len(self.context.db.get_step_completions(local.server_id)) == 2
        photos = self.context.db.list_photos(local.server_id)
        assert photos[0]["data"][:2] == b"\xff\xd8"

        second = self.reconciler.sync(self.user.id)
        assert second.records_pushed == 0
        assert len(self.context.db.list_records(self.user.id)) == 1

    def test_revoked_session_forces_login(self):
        self.context.sessions.revoke_user(self.user.id)

        with pytest.raises(AuthError):
            self.client.fetch_processes()

        assert self.client.token is None
        self.on_auth_failure.assert_called_once()

    def test_push_without_session_leaves_record_unsynced(self):
        self.controller.set_user(self.user)
        self.controller.refresh_processes()
        record = self.controller.start(self.process_id)
        self.controller.request_stop()
        self.controller.confirm_stop()
        self.context.sessions.revoke_user(self.user.id)

        stats = self.reconciler.sync(self.user.id)

        assert stats.records_failed == 1
        assert self.store.get_record(record.id).synced is False
