"""Base HTTP client and error taxonomy for the Chronometry API."""

import logging
from typing import Callable, Optional

import requests

from .. import __version__

__all__ = [
    "BaseApiClient",
    "ChronometryClientError",
    "AuthError",
    "ValidationError",
    "NetworkError",
    "ServerError",
]

logger = logging.getLogger(__name__)


class ChronometryClientError(Exception):
    """Chronometry client error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthError(ChronometryClientError):
    """401/403: missing or expired session, or an account that is not approved.

    ``status`` carries the account state the server reported on 403
    (``"pending"`` or ``"rejected"``), if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        status: Optional[str] = None,
    ):
        super().__init__(message, status_code)
        self.status = status


class ValidationError(ChronometryClientError):
    """400: the server rejected the payload."""

    pass


class NetworkError(ChronometryClientError):
    """The request never reached the server."""

    pass


class ServerError(ChronometryClientError):
    """5xx from the server, or a success body that is not JSON."""

    pass


class BaseApiClient:
    """Base HTTP client.

    Handles:
    - Session management
    - Bearer authentication header
    - Error classification into the client error taxonomy

    No retries happen at this level; the sync reconciler retries on its
    next trigger.
    """

    USER_AGENT = f"Chronometry/{__version__}"

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
        on_auth_failure: Optional[Callable[[AuthError], None]] = None,
    ):
        """Initialize base API client.

        Args:
            api_url: Chronometry server base URL
            token: Session token for authentication
            timeout: Request timeout in seconds
            session: Optional requests session (for dependency injection/testing)
            on_auth_failure: Called after an authenticated request got 401/403
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.on_auth_failure = on_auth_failure
        self._session = session or requests.Session()
        self._owns_session = session is None  # Track if we created the session

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def _get_headers(self) -> dict:
        """Get request headers with authentication."""
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _error_body(response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        authenticated: bool = True,
    ):
        """Make request to the Chronometry API.

        Args:
            method: HTTP method
            endpoint: API endpoint (relative to api_url)
            data: JSON request body
            authenticated: Whether a 401/403 means the stored session is dead

        Returns:
            Decoded JSON response (dict or list), or {} for empty bodies

        Raises:
            AuthError: For 401/403 responses
            ValidationError: For other 4xx responses
            ServerError: For 5xx responses or a body that is not JSON
            NetworkError: When the server cannot be reached
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        kwargs: dict = {"timeout": self.timeout, "headers": self._get_headers()}
        if data is not None:
            kwargs["json"] = data

        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise NetworkError("Cannot connect to Chronometry server") from e
        except requests.exceptions.Timeout as e:
            raise NetworkError("Request timed out") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(str(e)) from e

        status = response.status_code
        if status < 400:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise ServerError(
                    "Invalid response from server", status_code=status
                ) from e

        body = self._error_body(response)
        detail = body.get("error") or body.get("message") or ""

        if status in (401, 403):
            error = AuthError(
                detail or ("Not authenticated" if status == 401 else "Access denied"),
                status_code=status,
                status=body.get("status"),
            )
            if authenticated and self.token:
                self._handle_auth_failure(error)
            raise error
        if status >= 500:
            raise ServerError(f"Server error: {status}", status_code=status)
        raise ValidationError(
            detail or f"Request failed ({status})", status_code=status
        )

    def _handle_auth_failure(self, error: AuthError) -> None:
        logger.warning(f"Session rejected by server ({error.status_code}), clearing token")
        self.clear_credentials()
        if self.on_auth_failure is not None:
            self.on_auth_failure(error)

    def set_credentials(self, token: str) -> None:
        """Set authentication credentials."""
        self.token = token

    def clear_credentials(self) -> None:
        """Clear authentication credentials."""
        self.token = None

    def is_reachable(self) -> bool:
        """Check if the Chronometry server is reachable."""
        try:
            self._request("GET", "api/health", authenticated=False)
            return True
        except ChronometryClientError:
            return False

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "BaseApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
