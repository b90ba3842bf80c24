"""Sync module - local store, Chronometry API client and reconciliation."""

from .api_client import AuthResult, ChronometryClient, PushResult
from .connectivity import ConnectivityMonitor
from .http_client import (
    AuthError,
    ChronometryClientError,
    NetworkError,
    ServerError,
    ValidationError,
)
from .protocols import ApiClientProtocol, LocalStoreProtocol
from .reconciler import SyncReconciler, SyncStats
from .store import LocalStore, LocalStoreError

__all__ = [
    "AuthResult",
    "ChronometryClient",
    "PushResult",
    "ConnectivityMonitor",
    "AuthError",
    "ChronometryClientError",
    "NetworkError",
    "ServerError",
    "ValidationError",
    "ApiClientProtocol",
    "LocalStoreProtocol",
    "SyncReconciler",
    "SyncStats",
    "LocalStore",
    "LocalStoreError",
]
