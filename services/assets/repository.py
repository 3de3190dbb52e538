import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout, as_completed

from services.assets.errors import AssetTrackError, ConfigurationError, ConnectivityError, NotFoundError
from services.assets.history import default_clock


logger = logging.getLogger("assettrack.storage")

BATCH_SIZE = 25
MAX_WORKERS = 8


def chunked(items, size=BATCH_SIZE):
    items = list(items)
    return [items[i : i + size] for i in range(0, len(items), size)]


def group_by_site(items):
    """Insertion-ordered {site: [items]} for drafts or records."""
    out = {}
    for item in items:
        out.setdefault(item.site, []).append(item)
    return out


class WriteReport:
    """Outcome of a multi-partition write: which keys landed, which failed."""

    def __init__(self, operation):
        self.operation = operation
        self.succeeded = []
        self.failed = {}
        self.records = []

    @property
    def ok(self):
        return not self.failed

    @property
    def partial(self):
        return bool(self.failed) and bool(self.succeeded)

    def to_dict(self):
        return {
            "operation": self.operation,
            "ok": self.ok,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "count": len(self.records),
        }


def dispatch(operation, tasks, timeout=None):
    """
    Runs every task in `tasks` ({key: callable}) concurrently and waits for
    all of them. A task returns the records it wrote; an exception marks
    only its own key as failed.
    """
    report = WriteReport(operation)
    if not tasks:
        return report

    results = {}
    errors = {}
    executor = ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(tasks)))
    try:
        futures = {executor.submit(fn): key for key, fn in tasks.items()}
        try:
            for fut in as_completed(futures, timeout=timeout):
                key = futures[fut]
                try:
                    results[key] = fut.result() or []
                except AssetTrackError as ex:
                    errors[key] = ex.message
                except Exception as ex:
                    logger.exception("%s failed for partition %s", operation, key)
                    errors[key] = str(ex) or ex.__class__.__name__
        except FutureTimeout:
            for fut, key in futures.items():
                if key not in results and key not in errors:
                    fut.cancel()
                    errors[key] = f"Timed out after {timeout}s"
    finally:
        executor.shutdown(wait=False)

    return _collect(report, tasks, results, errors)


def run_serial(operation, tasks):
    """Same contract as dispatch() for backends whose session is not thread safe."""
    report = WriteReport(operation)
    results = {}
    errors = {}
    for key, fn in tasks.items():
        try:
            results[key] = fn() or []
        except AssetTrackError as ex:
            errors[key] = ex.message
    return _collect(report, tasks, results, errors)


def _collect(report, tasks, results, errors):
    for key in tasks:
        if key in results:
            report.succeeded.append(key)
            report.records.extend(results[key])
        else:
            report.failed[key] = errors.get(key, "Unknown failure")
            logger.warning("%s: partition %s failed: %s", report.operation, key, report.failed[key])
    return report


class AssetRepository(ABC):
    """
    Durable store contract shared by every backend.

    fetch_all      -> list[AssetRecord]
    add_many       -> WriteReport (records = created AssetRecords)
    update_one     -> AssetRecord (merged, history extended)
    delete_many    -> WriteReport (records = removed AssetRecords)
    """

    name = "base"

    def __init__(self, clock=None, site_rule=True, timeout=15.0):
        self.clock = clock or default_clock
        self.site_rule = site_rule
        self.timeout = timeout

    @abstractmethod
    def fetch_all(self, best_effort=False):
        raise NotImplementedError

    @abstractmethod
    def add_many(self, drafts):
        raise NotImplementedError

    @abstractmethod
    def update_one(self, asset_id, updates):
        raise NotImplementedError

    @abstractmethod
    def delete_many(self, records):
        raise NotImplementedError

    def check_configured(self):
        """Raise ConfigurationError if the backend cannot be used."""

    def describe(self):
        try:
            self.check_configured()
        except ConfigurationError as ex:
            return {"backend": self.name, "connected": False, "error": ex.message}
        return {"backend": self.name, "connected": True, "error": None}

    def get(self, asset_id):
        for record in self.fetch_all():
            if record.asset_id == asset_id:
                return record
        raise NotFoundError(f"Asset '{asset_id}' not found", asset_id=asset_id)

    def _read_guarded(self, reader, best_effort):
        """
        Initial page loads call with best_effort=True and get [] when the
        backend is missing or down; every other caller gets the error.
        """
        try:
            return reader()
        except (ConfigurationError, ConnectivityError) as ex:
            if not best_effort:
                raise
            logger.warning("%s fetch_all degraded to empty result: %s", self.name, ex.message)
            return []
