from types import SimpleNamespace

import pytest

from services.assets.errors import ConnectivityError
from services.assets.records import AssetRecord
from services.assets.snapshot import AssetSnapshot


def _rec(asset_id, model="R640"):
    return AssetRecord(asset_id=asset_id, model=model, serial_number=asset_id, site="LON1")


class StubRepository:
    def __init__(self, records=None, error=None):
        self.records = list(records or [])
        self.error = error
        self.calls = []

    def fetch_all(self, best_effort=False):
        self.calls.append(best_effort)
        if self.error and not best_effort:
            raise self.error
        return [] if self.error else list(self.records)


def test_ensure_loaded_reads_once():
    repo = StubRepository([_rec("a"), _rec("b")])
    snap = AssetSnapshot(repo)
    assert not snap.loaded

    assert [r.asset_id for r in snap.ensure_loaded()] == ["a", "b"]
    snap.ensure_loaded()
    assert repo.calls == [True]
    assert snap.loaded


def test_initial_load_degrades_but_explicit_reload_raises():
    snap = AssetSnapshot(StubRepository(error=ConnectivityError("down")))
    assert snap.ensure_loaded() == []
    with pytest.raises(ConnectivityError):
        snap.reload(best_effort=False)


def test_apply_local_patch_upserts_and_removes():
    snap = AssetSnapshot(StubRepository([_rec("a"), _rec("b"), _rec("c")]))
    snap.ensure_loaded()

    out = snap.apply_local_patch(
        added=[_rec("d")],
        updated=[_rec("b", model="R740")],
        removed_ids=["a"],
    )

    assert [(r.asset_id, r.model) for r in out] == [("b", "R740"), ("c", "R640"), ("d", "R640")]
    assert snap.find("b").model == "R740"
    assert snap.find("a") is None


def test_apply_local_patch_ignores_non_records():
    snap = AssetSnapshot(StubRepository())
    snap.ensure_loaded()
    assert snap.apply_local_patch(added=[SimpleNamespace(asset_id="x")]) == []


def test_records_returns_a_copy():
    snap = AssetSnapshot(StubRepository([_rec("a")]))
    records = snap.ensure_loaded()
    records.clear()
    assert len(snap.records()) == 1
