import logging
from threading import Lock

from services.assets.records import AssetRecord


logger = logging.getLogger("assettrack.snapshot")


class AssetSnapshot:
    """
    In-memory copy of the full record set held by one caller.

    It is only ever changed after a write has returned: reload() replaces
    it wholesale from the repository, apply_local_patch() folds in the
    records a successful write produced. It can be stale; the repository
    stays the source of truth.
    """

    def __init__(self, repository):
        self.repository = repository
        self._records = []
        self._loaded = False
        self._lock = Lock()

    @property
    def loaded(self):
        return self._loaded

    def records(self):
        with self._lock:
            return list(self._records)

    def find(self, asset_id):
        with self._lock:
            for record in self._records:
                if record.asset_id == asset_id:
                    return record
        return None

    def reload(self, best_effort=True):
        records = self.repository.fetch_all(best_effort=best_effort)
        with self._lock:
            self._records = list(records)
            self._loaded = True
        logger.debug("snapshot reloaded: %s records", len(records))
        return self.records()

    def ensure_loaded(self):
        if not self._loaded:
            return self.reload(best_effort=True)
        return self.records()

    def apply_local_patch(self, added=None, updated=None, removed_ids=None):
        """
        Upserts `added` and `updated` records by identity (new ones go to
        the end) and drops `removed_ids`.
        """
        removed = set(removed_ids or [])
        incoming = [r for r in list(added or []) + list(updated or []) if isinstance(r, AssetRecord)]

        with self._lock:
            index = {r.asset_id: i for i, r in enumerate(self._records)}
            records = list(self._records)
            for record in incoming:
                pos = index.get(record.asset_id)
                if pos is None:
                    index[record.asset_id] = len(records)
                    records.append(record)
                else:
                    records[pos] = record
            if removed:
                records = [r for r in records if r.asset_id not in removed]
            self._records = records
        return self.records()
