from services.assets.errors import (
    AssetTrackError,
    ConfigurationError,
    ConnectivityError,
    ExtractionError,
    InvalidArgumentError,
    NotFoundError,
    ValidationError,
)
from services.assets.factory import build_repository
from services.assets.history import MonotonicClock, apply_update, create
from services.assets.normalize import build_patch, normalize_row, normalize_rows
from services.assets.query import ListView, aggregate, failure_hotspots, filter_records, paginate
from services.assets.records import AssetDraft, AssetPatch, AssetRecord, AssetStatus, HistoryEntry
from services.assets.snapshot import AssetSnapshot

__all__ = [
    "AssetTrackError",
    "ConfigurationError",
    "ConnectivityError",
    "ExtractionError",
    "InvalidArgumentError",
    "NotFoundError",
    "ValidationError",
    "build_repository",
    "MonotonicClock",
    "apply_update",
    "create",
    "build_patch",
    "normalize_row",
    "normalize_rows",
    "ListView",
    "aggregate",
    "failure_hotspots",
    "filter_records",
    "paginate",
    "AssetDraft",
    "AssetPatch",
    "AssetRecord",
    "AssetStatus",
    "HistoryEntry",
    "AssetSnapshot",
]
