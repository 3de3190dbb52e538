import dataclasses
import time
import uuid
from threading import Lock

from services.assets.errors import InvalidArgumentError
from services.assets.normalize import build_patch
from services.assets.records import (
    CREATION_FIELD,
    CREATION_MARKER,
    FIELD_WIRE_NAMES,
    AssetDraft,
    AssetRecord,
    AssetStatus,
    HistoryEntry,
)


class MonotonicClock:
    """Millisecond wall clock that never returns a smaller value than before."""

    def __init__(self, source=None):
        self._source = source or (lambda: int(time.time() * 1000))
        self._last = 0
        self._lock = Lock()

    def __call__(self):
        with self._lock:
            now = int(self._source())
            if now < self._last:
                now = self._last
            self._last = now
            return now


default_clock = MonotonicClock()


def new_asset_id():
    return uuid.uuid4().hex


def create(draft, asset_id=None, clock=None):
    """
    Builds a persisted-shape record from a draft.

    A draft that already carries history (bulk import of records exported
    elsewhere) keeps it untouched; otherwise a single registration entry is
    seeded.
    """
    if not isinstance(draft, AssetDraft):
        raise InvalidArgumentError("create() expects an AssetDraft")

    clock = clock or default_clock
    now = clock()
    history = tuple(draft.history)
    if not history:
        history = (
            HistoryEntry(
                timestamp=now,
                field=CREATION_FIELD,
                old_value=None,
                new_value=CREATION_MARKER,
            ),
        )

    return AssetRecord(
        asset_id=asset_id or new_asset_id(),
        model=draft.model,
        serial_number=draft.serial_number,
        site=draft.site,
        country=draft.country,
        comments=draft.comments,
        status=draft.status,
        created_at=now,
        history=history,
    )


def _history_value(value):
    if isinstance(value, AssetStatus):
        return value.value
    return value


def diff(current, patch, timestamp):
    """One HistoryEntry per patched field whose value actually changes."""
    entries = []
    for attr, new_value in patch.changes().items():
        old_value = getattr(current, attr)
        if old_value == new_value:
            continue
        entries.append(
            HistoryEntry(
                timestamp=timestamp,
                field=FIELD_WIRE_NAMES[attr],
                old_value=_history_value(old_value),
                new_value=_history_value(new_value),
            )
        )
    return entries


def apply_update(current, updates, clock=None, site_rule=True):
    """
    Returns the next state of `current` with `updates` merged in and one
    history entry appended per changed field. Identity, creation time and
    existing history are carried over unchanged.
    """
    if not isinstance(current, AssetRecord):
        raise InvalidArgumentError("apply_update() expects an AssetRecord")

    patch = build_patch(updates, site_rule=site_rule)
    changes = patch.changes()
    if not changes:
        return current

    clock = clock or default_clock
    entries = diff(current, patch, clock())
    if not entries:
        return current

    return dataclasses.replace(
        current,
        history=tuple(current.history) + tuple(entries),
        **changes,
    )
