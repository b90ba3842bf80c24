"""Chronometry API client - auth, reference data and record sync."""

import base64
import logging
from dataclasses import dataclass
from typing import Optional

from ..config import DEFAULT_API_URL
from .http_client import (
    AuthError,
    BaseApiClient,
    ChronometryClientError,
    NetworkError,
)
from .models import Photo, ProcessDefinition, StepCompletion, TimeRecord, User

__all__ = [
    "ChronometryClient",
    "AuthResult",
    "PushResult",
]

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """Result of login or registration."""

    success: bool
    token: Optional[str] = None
    user: Optional[User] = None
    message: Optional[str] = None
    error: Optional[str] = None
    # Account state: reported on 403 for login, returned by registration
    status: Optional[str] = None
    network_error: bool = False


@dataclass
class PushResult:
    """Result of pushing one record."""

    success: bool
    server_id: Optional[int] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success


class ChronometryClient(BaseApiClient):
    """Client for the Chronometry REST API."""

    def __init__(self, api_url: str = DEFAULT_API_URL, **kwargs):
        super().__init__(api_url, **kwargs)

    # Authentication

    def login(self, username: str, password: str) -> AuthResult:
        """Log in and keep the session token on success.

        Never raises; failures are described by the result.
        """
        try:
            response = self._request(
                "POST",
                "api/auth/login",
                data={"username": username, "password": password},
                authenticated=False,
            )
        except AuthError as e:
            return AuthResult(success=False, error=e.message, status=e.status)
        except NetworkError as e:
            return AuthResult(success=False, error=e.message, network_error=True)
        except ChronometryClientError as e:
            return AuthResult(success=False, error=e.message)

        token = response.get("token")
        if not token:
            return AuthResult(success=False, error="Server did not return a token")
        self.set_credentials(token)
        user = User.from_api(response["user"]) if response.get("user") else None
        logger.info(f"Logged in as {username}")
        return AuthResult(success=True, token=token, user=user)

    def register(self, username: str, password: str, first_name: str = "") -> AuthResult:
        """Register a new account.

        The result status is the new account state. The first account on a
        server is approved at once, later ones wait for an administrator.
        """
        try:
            response = self._request(
                "POST",
                "api/auth/register",
                data={
                    "username": username,
                    "password": password,
                    "firstName": first_name,
                },
                authenticated=False,
            )
        except NetworkError as e:
            return AuthResult(success=False, error=e.message, network_error=True)
        except ChronometryClientError as e:
            return AuthResult(success=False, error=e.message)

        return AuthResult(
            success=True,
            message=response.get("message"),
            status=response.get("status") or "pending",
        )

    def me(self) -> User:
        """Validate the session and return the current user."""
        response = self._request("GET", "api/auth/me")
        return User.from_api(response["user"])

    def logout(self) -> None:
        """End the server session. The local token is dropped regardless."""
        try:
            self._request("POST", "api/auth/logout")
        except ChronometryClientError as e:
            logger.debug(f"Logout request failed: {e}")
        finally:
            self.clear_credentials()

    # Reference data

    def fetch_processes(self) -> list[ProcessDefinition]:
        """Get active process definitions with their ordered steps.

        Raises:
            NetworkError, AuthError, ServerError
        """
        response = self._request("GET", "api/processes")
        return [ProcessDefinition.from_api(item) for item in response]

    def get_objects(self) -> list[dict]:
        return self._request("GET", "api/objects")

    def get_assignments(self) -> list[dict]:
        return self._request("GET", "api/assignments")

    def get_stats(self) -> dict:
        """Per-process totals of the last seven days, computed by the server."""
        return self._request("GET", "api/stats")

    # Sync

    def push_record(
        self, record: TimeRecord, steps: Optional[list[StepCompletion]] = None
    ) -> PushResult:
        """Push a finished record with its step completions.

        Never raises: any failure returns a falsy result so the caller can
        leave the record unsynced and retry on the next trigger.
        """
        try:
            response = self._request(
                "POST",
                "api/sync/records",
                data={"records": [record.to_payload(steps)]},
            )
        except ChronometryClientError as e:
            logger.warning(f"Push of record {record.id} failed: {e}")
            return PushResult(success=False, error=str(e))

        if not isinstance(response, dict) or not response.get("success", True):
            logger.warning(f"Push of record {record.id} rejected: {response!r}")
            return PushResult(success=False, error="Unexpected response from server")

        ids = response.get("ids")
        if not isinstance(ids, list) or not ids:
            # Photos are uploaded against the server id, so a push without one is retried
            logger.warning(f"Push of record {record.id} returned no server id")
            return PushResult(success=False, error="Server did not return a record id")
        return PushResult(success=True, server_id=ids[0])

    def upload_photo(self, server_record_id: int, photo: Photo) -> bool:
        """Upload a photo for a record that already exists server-side."""
        try:
            self._request(
                "POST",
                f"api/records/{server_record_id}/photos",
                data={
                    "stepId": photo.step_id,
                    "fileData": base64.b64encode(photo.data).decode("ascii"),
                    "comment": photo.comment,
                    "timestamp": photo.timestamp.isoformat(),
                },
            )
            return True
        except ChronometryClientError as e:
            logger.warning(f"Photo {photo.id} upload failed: {e}")
            return False

    # Online-mode records

    def start_record(
        self,
        process_id: int,
        object_id: Optional[int] = None,
        assignment_id: Optional[int] = None,
    ) -> dict:
        """Start a record directly on the server. Returns {id, start_time}."""
        return self._request(
            "POST",
            "api/records/start",
            data={
                "processId": process_id,
                "objectId": object_id,
                "assignmentId": assignment_id,
            },
        )

    def stop_record(self, record_id: int, comment: str = "") -> dict:
        """Stop a server-side record. Returns {end_time, duration}."""
        return self._request(
            "POST", f"api/records/{record_id}/stop", data={"comment": comment}
        )

    def start_step_timing(self, record_id: int, step_id: int) -> dict:
        return self._request("POST", f"api/records/{record_id}/steps/{step_id}/start")

    def stop_step_timing(self, timing_id: int) -> dict:
        return self._request("POST", f"api/step-timings/{timing_id}/stop")
