"""Auth module - handles login and secure credential storage."""

from .keychain import KeychainManager, StoredCredentials
from .login import LoginManager, LoginState

__all__ = ["KeychainManager", "StoredCredentials", "LoginManager", "LoginState"]
