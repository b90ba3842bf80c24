"""Tests for the Chronometry REST server."""

import base64
import tempfile
from pathlib import Path

from fastapi.testclient import TestClient

from chronometry.config import ServerSettings
from chronometry.server import ServerContext, create_app


class ServerTestCase:
    """Fresh server with an admin and an approved worker."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        settings = ServerSettings(db_path=Path(self.temp_dir) / "server.db")
        self.context = ServerContext.from_settings(settings)
        self.client = TestClient(create_app(self.context))

        self.first_registration = self.register("boss", "secret").json()
        self.admin = self.login("boss", "secret")

        worker_id = self.register("anna", "secret", "Anna").json()["userId"]
        self.put(f"/api/admin/users/{worker_id}/status", self.admin, {"status": "approved"})
        self.worker_id = worker_id
        self.worker = self.login("anna", "secret")

    def teardown_method(self):
        """Clean up."""
        self.client.close()
        self.context.close()

    def register(self, username, password, first_name=None):
        body = {"username": username, "password": password}
        if first_name:
            body["firstName"] = first_name
        return self.client.post("/api/auth/register", json=body)

    def login(self, username, password):
        response = self.client.post(
            "/api/auth/login", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        return response.json()["token"]

    @staticmethod
    def auth(token):
        return {"Authorization": f"Bearer {token}"}

    def get(self, path, token):
        return self.client.get(path, headers=self.auth(token))

    def post(self, path, token, body=None):
        return self.client.post(path, headers=self.auth(token), json=body or {})

    def put(self, path, token, body):
        return self.client.put(path, headers=self.auth(token), json=body)

    def delete(self, path, token):
        return self.client.delete(path, headers=self.auth(token))

    def create_process(self, name="Receiving", steps=None, **fields):
        body = {"name": name, "isSequential": bool(steps), "steps": steps or [], **fields}
        response = self.post("/api/admin/processes", self.admin, body)
        assert response.status_code == 200, response.text
        return response.json()["id"]


class TestAuth(ServerTestCase):
    """Registration, login and session handling."""

    def test_health_is_public(self):
        response = self.client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_first_registration_reports_approved(self):
        assert self.first_registration["status"] == "approved"
        assert self.first_registration["role"] == "admin"

    def test_first_user_is_approved_admin(self):
        me = self.get("/api/auth/me", self.admin).json()["user"]

        assert me["role"] == "admin"
        assert me["status"] == "approved"

    def test_new_user_is_pending(self):
        response = self.register("bob", "secret")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["status"] == "pending"

        login = self.client.post("/api/auth/login", json={"username": "bob", "password": "secret"})
        assert login.status_code == 403
        assert login.json()["status"] == "pending"
        assert "token" not in login.json()

    def test_first_name_defaults_to_username(self):
        user_id = self.register("bob", "secret").json()["userId"]

        users = self.get("/api/admin/users", self.admin).json()
        assert next(u for u in users if u["id"] == user_id)["first_name"] == "bob"

    def test_rejected_user_cannot_log_in(self):
        user_id = self.register("bob", "secret").json()["userId"]
        self.put(f"/api/admin/users/{user_id}/status", self.admin, {"status": "rejected"})

        login = self.client.post("/api/auth/login", json={"username": "bob", "password": "secret"})

        assert login.status_code == 403
        assert login.json()["status"] == "rejected"

    def test_register_validation(self):
        assert self.register("", "secret").status_code == 400
        assert self.register("ab", "secret").status_code == 400
        assert self.register("bobby", "abc").status_code == 400
        duplicate = self.register("anna", "secret")
        assert duplicate.status_code == 400
        assert "error" in duplicate.json()

    def test_bad_password(self):
        response = self.client.post(
            "/api/auth/login", json={"username": "anna", "password": "wrong"}
        )

        assert response.status_code == 401
        assert "token" not in response.json()

    def test_login_missing_fields(self):
        response = self.client.post("/api/auth/login", json={"username": "anna"})

        assert response.status_code == 400

    def test_no_token(self):
        response = self.client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["error"]

    def test_invalid_token(self):
        assert self.get("/api/processes", "nope").status_code == 401

    def test_logout_revokes_token(self):
        assert self.post("/api/auth/logout", self.worker).status_code == 200

        assert self.get("/api/auth/me", self.worker).status_code == 401

    def test_rejecting_user_revokes_sessions(self):
        self.put(f"/api/admin/users/{self.worker_id}/status", self.admin, {"status": "rejected"})

        assert self.get("/api/auth/me", self.worker).status_code == 401

    def test_pending_session_cannot_read_processes(self):
        self.put(f"/api/admin/users/{self.worker_id}/status", self.admin, {"status": "approved"})
        token = self.login("anna", "secret")
        # Demote without revoking by writing the status directly
        self.context.db.set_user_status(self.worker_id, "pending")

        response = self.get("/api/processes", token)

        assert response.status_code == 403
        assert response.json()["status"] == "pending"


class TestProcesses(ServerTestCase):
    """Process definitions and admin management."""

    def test_processes_ordered_by_priority_then_name(self):
        self.create_process("Zeta", priority=5)
        self.create_process("Alpha")
        self.create_process("Beta")

        names = [p["name"] for p in self.get("/api/processes", self.worker).json()]

        assert names == ["Zeta", "Alpha", "Beta"]

    def test_steps_are_ordered(self):
        self.create_process(
            steps=[
                {"name": "Second", "stepNumber": 2},
                {"name": "First", "stepNumber": 1, "requiresPhoto": True, "photoInstructions": "Snap"},
            ]
        )

        process = self.get("/api/processes", self.worker).json()[0]

        assert process["is_sequential"] is True
        assert [s["name"] for s in process["steps"]] == ["First", "Second"]
        assert process["steps"][0]["requires_photo"] is True
        assert process["steps"][0]["photo_instructions"] == "Snap"

    def test_update_replaces_steps(self):
        process_id = self.create_process(steps=[{"name": "Old"}])

        self.put(f"/api/admin/processes/{process_id}", self.admin, {"steps": [{"name": "New"}, {"name": "Newer"}]})

        process = self.get("/api/processes", self.worker).json()[0]
        assert [s["name"] for s in process["steps"]] == ["New", "Newer"]
        assert [s["step_number"] for s in process["steps"]] == [1, 2]

    def test_update_without_steps_keeps_them(self):
        process_id = self.create_process(steps=[{"name": "Keep"}])

        self.put(f"/api/admin/processes/{process_id}", self.admin, {"name": "Renamed"})

        process = self.get("/api/processes", self.worker).json()[0]
        assert process["name"] == "Renamed"
        assert [s["name"] for s in process["steps"]] == ["Keep"]

    def test_deleted_process_hidden(self):
        process_id = self.create_process()

        self.delete(f"/api/admin/processes/{process_id}", self.admin)

        assert self.get("/api/processes", self.worker).json() == []
        assert len(self.get("/api/admin/processes", self.admin).json()) == 1

    def test_categories(self):
        response = self.post("/api/admin/categories", self.admin, {"name": "Warehouse", "color": "#333"})
        category_id = response.json()["id"]
        self.create_process(categoryId=category_id)

        process = self.get("/api/processes", self.worker).json()[0]

        assert process["category_name"] == "Warehouse"
        assert process["category_color"] == "#333"
        assert self.post("/api/admin/categories", self.admin, {"name": "Warehouse"}).status_code == 400

    def test_admin_routes_forbidden_for_workers(self):
        assert self.get("/api/admin/users", self.worker).status_code == 403
        assert self.post("/api/admin/processes", self.worker, {"name": "X"}).status_code == 403

    def test_malformed_body_is_400(self):
        response = self.post("/api/admin/processes", self.admin, {"description": "no name"})

        assert response.status_code == 400
        assert "name" in response.json()["error"]


class TestAdminUsers(ServerTestCase):
    """User administration."""

    def test_invalid_status(self):
        response = self.put(f"/api/admin/users/{self.worker_id}/status", self.admin, {"status": "banned"})

        assert response.status_code == 400

    def test_invalid_role(self):
        response = self.put(f"/api/admin/users/{self.worker_id}/role", self.admin, {"role": "root"})

        assert response.status_code == 400

    def test_promote_to_admin(self):
        self.put(f"/api/admin/users/{self.worker_id}/role", self.admin, {"role": "admin"})

        assert self.get("/api/admin/users", self.worker).status_code == 200

    def test_cannot_delete_self(self):
        me = self.get("/api/auth/me", self.admin).json()["user"]

        assert self.delete(f"/api/admin/users/{me['id']}", self.admin).status_code == 400

    def test_delete_user(self):
        assert self.delete(f"/api/admin/users/{self.worker_id}", self.admin).status_code == 200

        assert self.get("/api/auth/me", self.worker).status_code == 401
        assert self.delete(f"/api/admin/users/{self.worker_id}", self.admin).status_code == 404


class TestRecords(ServerTestCase):
    """Sync, online timing, photos and stats."""

    def setup_method(self):
        super().setup_method()
        self.process_id = self.create_process(steps=[{"name": "Unload"}, {"name": "Check"}])
        process = self.get("/api/processes", self.worker).json()[0]
        self.step_ids = [s["id"] for s in process["steps"]]

    def sync_payload(self, start="2026-03-02T09:00:00+00:00", **fields):
        record = {
            "localId": 1,
            "processId": self.process_id,
            "startTime": start,
            "endTime": "2026-03-02T09:10:00+00:00",
            "duration": 600,
            "comment": "ok",
            "stepsCompleted": 1,
            "steps": [{"stepId": self.step_ids[0], "completedAt": "2026-03-02T09:05:00+00:00"}],
        }
        record.update(fields)
        return {"records": [record]}

    def test_sync_records(self):
        response = self.post("/api/sync/records", self.worker, self.sync_payload())

        assert response.status_code == 200
        record_id = response.json()["ids"][0]
        record = self.context.db.get_record(record_id)
        assert record["duration"] == 600
        assert record["user_id"] == self.worker_id
        assert [c["step_id"] for c in self.context.db.get_step_completions(record_id)] == [self.step_ids[0]]

    def test_sync_is_idempotent(self):
        first = self.post("/api/sync/records", self.worker, self.sync_payload()).json()["ids"]
        second = self.post(
            "/api/sync/records", self.worker, self.sync_payload(comment="edited")
        ).json()["ids"]

        assert first == second
        assert self.context.db.get_record(first[0])["comment"] == "edited"
        assert len(self.context.db.list_records(self.worker_id)) == 1

    def test_sync_unknown_process(self):
        response = self.post("/api/sync/records", self.worker, self.sync_payload(processId=999))

        assert response.status_code == 400

    def test_sync_bad_timestamp(self):
        response = self.post("/api/sync/records", self.worker, self.sync_payload(start="yesterday"))

        assert response.status_code == 400

    def test_online_start_stop(self):
        started = self.post("/api/records/start", self.worker, {"processId": self.process_id}).json()
        record_id = started["id"]

        timing = self.post(f"/api/records/{record_id}/steps/{self.step_ids[0]}/start", self.worker).json()
        stopped_step = self.post(f"/api/step-timings/{timing['id']}/stop", self.worker).json()
        stopped = self.post(f"/api/records/{record_id}/stop", self.worker, {"comment": "done"}).json()

        assert started["success"] is True
        assert stopped_step["duration"] >= 0
        assert stopped["duration"] >= 0
        timings = self.get(f"/api/records/{record_id}/step-timings", self.worker).json()
        assert timings[0]["step_name"] == "Unload"
        record = self.context.db.get_record(record_id)
        assert record["steps_completed"] == 1
        assert record["comment"] == "done"

        again = self.post(f"/api/records/{record_id}/stop", self.worker, {})
        assert again.status_code == 400

    def test_other_users_record_not_found(self):
        record_id = self.post("/api/records/start", self.admin, {"processId": self.process_id}).json()["id"]

        assert self.post(f"/api/records/{record_id}/stop", self.worker, {}).status_code == 404

    def test_photos(self):
        record_id = self.post("/api/sync/records", self.worker, self.sync_payload()).json()["ids"][0]
        data = b"\xff\xd8fake-jpeg"

        upload = self.post(
            f"/api/records/{record_id}/photos",
            self.worker,
            {"stepId": self.step_ids[1], "fileData": base64.b64encode(data).decode(), "comment": "note"},
        )
        photos = self.get(f"/api/records/{record_id}/photos", self.worker).json()

        assert upload.status_code == 200
        assert base64.b64decode(photos[0]["fileData"]) == data
        assert photos[0]["stepId"] == self.step_ids[1]

    def test_photo_data_url(self):
        record_id = self.post("/api/sync/records", self.worker, self.sync_payload()).json()["ids"][0]
        encoded = base64.b64encode(b"img").decode()

        response = self.post(
            f"/api/records/{record_id}/photos",
            self.worker,
            {"fileData": f"data:image/jpeg;base64,{encoded}"},
        )

        assert response.status_code == 200

    def test_photo_invalid_base64(self):
        record_id = self.post("/api/sync/records", self.worker, self.sync_payload()).json()["ids"][0]

        response = self.post(f"/api/records/{record_id}/photos", self.worker, {"fileData": "@@@"})

        assert response.status_code == 400

    def test_stats(self):
        self.post("/api/records/start", self.worker, {"processId": self.process_id})
        record_id = self.context.db.list_records(self.worker_id)[0]["id"]
        self.post(f"/api/records/{record_id}/stop", self.worker, {})

        stats = self.get("/api/stats", self.worker).json()

        assert stats["success"] is True
        assert stats["stats"][0]["name"] == "Receiving"
        assert stats["stats"][0]["count"] == 1

    def test_analytics(self):
        self.post("/api/sync/records", self.worker, self.sync_payload())

        summary = self.get("/api/admin/analytics/summary?startDate=2026-03-01&endDate=2026-03-02", self.admin).json()
        by_process = self.get("/api/admin/analytics/by-process", self.admin).json()
        by_user = self.get("/api/admin/analytics/by-user", self.admin).json()
        outside = self.get("/api/admin/analytics/summary?startDate=2026-04-01", self.admin).json()

        assert summary["total_records"] == 1
        assert summary["total_duration"] == 600
        assert by_process[0]["name"] == "Receiving"
        assert by_user[0]["username"] == "anna"
        assert outside["total_records"] == 0


class TestObjectsAndAssignments(ServerTestCase):
    """Objects and assignments."""

    def test_objects_crud(self):
        object_id = self.post("/api/admin/objects", self.admin, {"name": "Store 1", "address": "Main St"}).json()["id"]
        self.put(f"/api/admin/objects/{object_id}", self.admin, {"isActive": False})
        self.post("/api/admin/objects", self.admin, {"name": "Store 2"})

        visible = [o["name"] for o in self.get("/api/objects", self.worker).json()]

        assert visible == ["Store 2"]
        assert self.delete(f"/api/admin/objects/{object_id}", self.admin).status_code == 200
        assert self.delete(f"/api/admin/objects/{object_id}", self.admin).status_code == 404

    def test_delete_object_used_by_record(self):
        process_id = self.create_process()
        object_id = self.post("/api/admin/objects", self.admin, {"name": "Store 1"}).json()["id"]
        record_id = self.post(
            "/api/records/start", self.worker, {"processId": process_id, "objectId": object_id}
        ).json()["id"]

        response = self.delete(f"/api/admin/objects/{object_id}", self.admin)

        assert response.status_code == 200
        assert self.context.db.get_record(record_id)["object_id"] is None

    def test_delete_assignment_used_by_record(self):
        process_id = self.create_process()
        assignment_id = self.post(
            "/api/admin/assignments",
            self.admin,
            {"userId": self.worker_id, "processId": process_id},
        ).json()["id"]
        record_id = self.post(
            "/api/records/start",
            self.worker,
            {"processId": process_id, "assignmentId": assignment_id},
        ).json()["id"]

        response = self.delete(f"/api/admin/assignments/{assignment_id}", self.admin)

        assert response.status_code == 200
        assert self.context.db.get_record(record_id)["assignment_id"] is None

    def test_assignments(self):
        process_id = self.create_process()
        assignment_id = self.post(
            "/api/admin/assignments",
            self.admin,
            {"userId": self.worker_id, "processId": process_id, "dueDate": "2026-03-05"},
        ).json()["id"]

        mine = self.get("/api/assignments", self.worker).json()
        assert [a["id"] for a in mine] == [assignment_id]
        assert mine[0]["process_name"] == "Receiving"

        self.post(
            "/api/records/start",
            self.worker,
            {"processId": process_id, "assignmentId": assignment_id},
        )
        assert self.get("/api/assignments", self.worker).json()[0]["status"] == "in_progress"

        self.put(f"/api/admin/assignments/{assignment_id}", self.admin, {"status": "completed"})
        assert self.get("/api/assignments", self.worker).json() == []

    def test_assignment_unknown_user(self):
        process_id = self.create_process()

        response = self.post(
            "/api/admin/assignments", self.admin, {"userId": 999, "processId": process_id}
        )

        assert response.status_code == 400
