import logging

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models.asset import AssetRow
from services.assets import history
from services.assets.errors import ConnectivityError, NotFoundError
from services.assets.normalize import build_patch, norm_str
from services.assets.records import AssetRecord
from services.assets.repository import BATCH_SIZE, AssetRepository, chunked, run_serial


logger = logging.getLogger("assettrack.storage.sql")


class SqlAssetRepository(AssetRepository):
    """
    Flat-table backend on the application database. Needs an app context.
    Each chunk of 25 rows is one transaction; a failed chunk rolls back
    alone.
    """

    name = "sql"

    def __init__(self, session=None, **kwargs):
        super().__init__(**kwargs)
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def _commit(self, action):
        try:
            self.session.commit()
        except SQLAlchemyError as ex:
            self.session.rollback()
            raise ConnectivityError(f"Database {action} failed: {ex.__class__.__name__}") from ex

    def fetch_all(self, best_effort=False):
        return self._read_guarded(self._select_all, best_effort)

    def _select_all(self):
        try:
            rows = AssetRow.query.order_by(AssetRow.created_at.asc(), AssetRow.id.asc()).all()
        except SQLAlchemyError as ex:
            self.session.rollback()
            raise ConnectivityError(f"Database read failed: {ex.__class__.__name__}") from ex
        return [row.to_record() for row in rows]

    def _row(self, asset_id):
        try:
            row = AssetRow.query.filter_by(id=asset_id).first()
        except SQLAlchemyError as ex:
            self.session.rollback()
            raise ConnectivityError(f"Database read failed: {ex.__class__.__name__}") from ex
        if row is None:
            raise NotFoundError(f"Asset '{asset_id}' not found", asset_id=asset_id)
        return row

    def get(self, asset_id):
        return self._row(asset_id).to_record()

    def _insert_batch(self, records):
        for record in records:
            self.session.add(AssetRow.from_record(record))
        self._commit("insert")
        return records

    def add_many(self, drafts):
        records = [history.create(d, clock=self.clock) for d in drafts]
        tasks = {}
        for n, batch in enumerate(chunked(records, BATCH_SIZE), start=1):
            tasks[f"batch-{n}"] = lambda batch=batch: self._insert_batch(batch)
        report = run_serial("add", tasks)
        logger.info("add_many: %s rows inserted, %s batches failed", len(report.records), len(report.failed))
        return report

    def update_one(self, asset_id, updates):
        patch = build_patch(updates, site_rule=self.site_rule)
        row = self._row(asset_id)
        current = row.to_record()
        updated = history.apply_update(current, patch, clock=self.clock, site_rule=self.site_rule)
        if updated is current:
            return current
        row.apply(updated)
        self._commit("update")
        return updated

    def _delete_batch(self, ids):
        try:
            rows = AssetRow.query.filter(AssetRow.id.in_(ids)).all()
        except SQLAlchemyError as ex:
            self.session.rollback()
            raise ConnectivityError(f"Database read failed: {ex.__class__.__name__}") from ex
        removed = [row.to_record() for row in rows]
        for row in rows:
            self.session.delete(row)
        self._commit("delete")
        return removed

    def delete_many(self, records):
        ids = []
        for item in records or []:
            key = item.asset_id if isinstance(item, AssetRecord) else norm_str(item)
            if key and key not in ids:
                ids.append(key)
        tasks = {}
        for n, batch in enumerate(chunked(ids, BATCH_SIZE), start=1):
            tasks[f"batch-{n}"] = lambda batch=batch: self._delete_batch(batch)
        return run_serial("delete", tasks)

    def describe(self):
        out = super().describe()
        out["database"] = db.engine.url.render_as_string(hide_password=True)
        return out
