"""Login management and authentication flow."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..sync.api_client import ChronometryClient
from ..sync.http_client import AuthError, ChronometryClientError
from ..sync.models import User
from .keychain import KeychainManager, StoredCredentials

__all__ = ["LoginManager", "LoginState"]

logger = logging.getLogger(__name__)


@dataclass
class LoginState:
    """Current login state."""

    logged_in: bool = False
    user: Optional[User] = None
    # True when the session could not be verified because the server was unreachable
    offline: bool = False
    error: Optional[str] = None
    # Account state reported by the server ("pending" / "rejected")
    account_status: Optional[str] = None
    message: Optional[str] = None


_STATUS_MESSAGES = {
    "pending": "Your account is waiting for administrator approval",
    "rejected": "Your account has been rejected",
}


class LoginManager:
    """Manages authentication flow."""

    def __init__(
        self,
        client: ChronometryClient,
        keychain: Optional[KeychainManager] = None,
    ):
        """Initialize login manager.

        Args:
            client: Chronometry API client
            keychain: Keychain manager (creates default if None)
        """
        self.client = client
        self.keychain = keychain or KeychainManager()
        self._on_login_callback: Optional[Callable[[LoginState], None]] = None
        self._on_logout_callback: Optional[Callable[[], None]] = None
        self._user: Optional[User] = None

        self.client.on_auth_failure = self.handle_auth_failure

    def set_login_callback(self, callback: Callable[[LoginState], None]) -> None:
        """Set callback for login state changes."""
        self._on_login_callback = callback

    def set_logout_callback(self, callback: Callable[[], None]) -> None:
        """Set callback for logout (explicit or forced by the server)."""
        self._on_logout_callback = callback

    @property
    def user(self) -> Optional[User]:
        return self._user

    def _logged_in(self, state: LoginState) -> LoginState:
        self._user = state.user
        if self._on_login_callback:
            self._on_login_callback(state)
        return state

    def try_auto_login(self) -> LoginState:
        """Try to log in with stored credentials.

        A session the server rejects is discarded. When the server cannot be
        reached the cached user is kept and the app works offline.
        """
        credentials = self.keychain.load()
        if not credentials:
            return LoginState(logged_in=False)

        self.client.set_credentials(credentials.token)

        try:
            user = self.client.me()
        except AuthError as e:
            logger.warning(f"Auto-login failed (auth): {e}")
            self.client.clear_credentials()
            self.keychain.delete()
            return LoginState(logged_in=False, error="Session expired, please log in again")
        except ChronometryClientError as e:
            logger.warning(f"Auto-login offline, using cached user: {e}")
            return self._logged_in(
                LoginState(logged_in=True, user=credentials.user, offline=True)
            )

        if user != credentials.user:
            self.keychain.store(StoredCredentials(credentials.token, user, self.client.api_url))
        logger.info(f"Auto-login successful for {user.username}")
        return self._logged_in(LoginState(logged_in=True, user=user))

    def login(self, username: str, password: str) -> LoginState:
        """Log in with username and password."""
        username = username.strip()
        if not username or not password:
            return LoginState(logged_in=False, error="Enter username and password")

        result = self.client.login(username, password)
        if not result.success:
            error = _STATUS_MESSAGES.get(result.status, result.error)
            return LoginState(
                logged_in=False,
                error=error or "Login failed",
                account_status=result.status,
            )

        credentials = StoredCredentials(
            token=result.token, user=result.user, api_url=self.client.api_url
        )
        if not self.keychain.store(credentials):
            logger.warning("Failed to store credentials in keychain")

        return self._logged_in(LoginState(logged_in=True, user=result.user))

    def register(self, username: str, password: str, first_name: str = "") -> LoginState:
        """Create an account. Unless it is the first one, it waits for approval."""
        result = self.client.register(username.strip(), password, first_name.strip())
        if not result.success:
            return LoginState(logged_in=False, error=result.error or "Registration failed")
        status = result.status or "pending"
        return LoginState(
            logged_in=False,
            account_status=status,
            message=result.message or _STATUS_MESSAGES.get(status, "Registration complete"),
        )

    def logout(self) -> bool:
        """Log out and end the server session."""
        self.client.logout()
        self.keychain.delete()
        self._user = None

        logger.info("Logged out")

        if self._on_logout_callback:
            self._on_logout_callback()

        return True

    def handle_auth_failure(self, error: AuthError) -> None:
        """The server rejected our session: drop it and send the user to login."""
        logger.warning(f"Session invalidated by server: {error}")
        self.keychain.delete()
        was_logged_in = self._user is not None
        self._user = None
        # During auto-login the caller reports the failure itself
        if was_logged_in and self._on_logout_callback:
            self._on_logout_callback()

    def is_logged_in(self) -> bool:
        return self._user is not None
