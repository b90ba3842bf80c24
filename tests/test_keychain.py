"""Tests for keychain credential storage."""

from unittest.mock import patch

from keyring.errors import KeyringError, PasswordDeleteError

from chronometry.auth.keychain import ACCOUNT_NAME, KeychainManager, StoredCredentials
from chronometry.sync.models import User


class TestStoredCredentials:
    def test_json_round_trip(self):
        credentials = StoredCredentials(
            token="tok", user=User(id=1, username="anna", role="admin"), api_url="http://x"
        )

        restored = StoredCredentials.from_json(credentials.to_json())

        assert restored == credentials


class TestKeychainManager:
    def setup_method(self):
        self.manager = KeychainManager(service_name="Chronometry-Test")
        self.credentials = StoredCredentials(token="tok", user=User(id=1, username="anna"))

    @patch("chronometry.auth.keychain.keyring")
    def test_store(self, mock_keyring):
        assert self.manager.store(self.credentials) is True

        service, account, payload = mock_keyring.set_password.call_args.args
        assert service == "Chronometry-Test"
        assert account == ACCOUNT_NAME
        assert StoredCredentials.from_json(payload).token == "tok"

    @patch("chronometry.auth.keychain.keyring")
    def test_store_failure(self, mock_keyring):
        mock_keyring.set_password.side_effect = KeyringError("locked")

        assert self.manager.store(self.credentials) is False

    @patch("chronometry.auth.keychain.keyring")
    def test_load(self, mock_keyring):
        mock_keyring.get_password.return_value = self.credentials.to_json()

        assert self.manager.load() == self.credentials
        assert self.manager.has_credentials() is True

    @patch("chronometry.auth.keychain.keyring")
    def test_load_missing(self, mock_keyring):
        mock_keyring.get_password.return_value = None

        assert self.manager.load() is None
        assert self.manager.has_credentials() is False

    @patch("chronometry.auth.keychain.keyring")
    def test_load_corrupt_entry(self, mock_keyring):
        mock_keyring.get_password.return_value = "{broken"

        assert self.manager.load() is None

    @patch("chronometry.auth.keychain.keyring")
    def test_delete_missing_entry(self, mock_keyring):
        mock_keyring.delete_password.side_effect = PasswordDeleteError()

        assert self.manager.delete() is True
