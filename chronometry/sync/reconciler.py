"""Sync reconciler - drains unsynced local records to the Chronometry server."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .models import TimeRecord
from .protocols import ApiClientProtocol, LocalStoreProtocol
from .store import LocalStoreError

__all__ = ["SyncReconciler", "SyncStats"]

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    """Statistics from a sync cycle."""

    records_pushed: int = 0
    records_failed: int = 0
    photos_uploaded: int = 0
    photos_failed: int = 0
    skipped: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


class SyncReconciler:
    """Pushes finished, unsynced records and their photos to the server.

    Each record is handled independently: a failed push leaves the record
    unsynced for the next trigger and does not stop the others. There is
    no backoff and no retry limit; failures only reach the log.
    """

    def __init__(self, api: ApiClientProtocol, store: LocalStoreProtocol):
        self.api = api
        self.store = store
        self._lock = threading.Lock()
        self._last_sync: Optional[datetime] = None
        self._last_stats: Optional[SyncStats] = None

    def sync(
        self, user_id: Optional[int] = None, retry_photos: bool = False
    ) -> SyncStats:
        """Run one reconciliation pass.

        Returns immediately, without touching the network, when nothing is
        pending. A pass that starts while another one is running is skipped.

        Photos whose upload failed on an earlier pass belong to records that
        are already synced. They are retried only when ``retry_photos`` is set
        (periodic and manual syncs), so event-driven passes with no unsynced
        records stay off the network.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Sync already in progress, skipping")
            return SyncStats(skipped=True)

        try:
            stats = SyncStats()
            records = self.store.get_unsynced_records(user_id)
            photo_backlog = (
                self.store.get_records_with_unsynced_photos(user_id)
                if retry_photos
                else []
            )

            if not records and not photo_backlog:
                return stats

            logger.info(f"Syncing {len(records)} record(s)")
            for record in records:
                self._push_record(record, stats)

            for record in photo_backlog:
                self._upload_photos(record.id, record.server_id, stats)

            if stats.records_failed:
                logger.warning(
                    f"Sync finished with {stats.records_failed} failed record(s), "
                    "will retry on next trigger"
                )
            else:
                logger.info(
                    f"Sync complete: {stats.records_pushed} record(s), "
                    f"{stats.photos_uploaded} photo(s)"
                )

            self._last_sync = datetime.now(timezone.utc)
            self._last_stats = stats
            return stats
        finally:
            self._lock.release()

    def _push_record(self, record: TimeRecord, stats: SyncStats) -> None:
        try:
            steps = self.store.get_completed_steps(record.id)
        except LocalStoreError as e:
            stats.records_failed += 1
            stats.errors.append(f"Record {record.id}: {e}")
            return

        result = self.api.push_record(record, steps)
        if not result:
            stats.records_failed += 1
            stats.errors.append(f"Record {record.id}: {result.error or 'push failed'}")
            return

        try:
            self.store.mark_synced(record.id, result.server_id)
        except LocalStoreError as e:
            # Server has it; next pass pushes again and the server upserts
            stats.records_failed += 1
            stats.errors.append(f"Record {record.id}: {e}")
            return

        stats.records_pushed += 1
        if result.server_id is not None:
            self._upload_photos(record.id, result.server_id, stats)

    def _upload_photos(self, record_id: int, server_id: int, stats: SyncStats) -> None:
        for photo in self.store.get_unsynced_photos(record_id):
            if self.api.upload_photo(server_id, photo):
                self.store.mark_photo_synced(photo.id)
                stats.photos_uploaded += 1
            else:
                stats.photos_failed += 1
                stats.errors.append(f"Photo {photo.id} of record {record_id}: upload failed")

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def get_status(self) -> dict:
        """Get current sync status."""
        return {
            "running": self.is_running,
            "pending_records": len(self.store.get_unsynced_records()),
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_errors": list(self._last_stats.errors) if self._last_stats else [],
        }
