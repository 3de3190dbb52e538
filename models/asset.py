from datetime import datetime

from extensions import db
from services.assets.records import AssetRecord, AssetStatus, history_from_list


class AssetRow(db.Model):
    __tablename__ = "assets"

    id = db.Column(db.String(64), primary_key=True)
    model = db.Column(db.String(255), nullable=False, index=True)
    serial_number = db.Column(db.String(255), nullable=False, index=True)
    site = db.Column(db.String(128), nullable=False, index=True)
    country = db.Column(db.String(128), nullable=False, default="", index=True)
    comments = db.Column(db.Text, nullable=False, default="")
    status = db.Column(
        db.String(32), nullable=False, default=AssetStatus.NORMAL.value, index=True
    )
    created_at = db.Column(db.BigInteger, nullable=False)
    history_json = db.Column(db.JSON, nullable=False, default=list)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    @classmethod
    def from_record(cls, record):
        row = cls(id=record.asset_id, created_at=record.created_at)
        row.apply(record)
        return row

    def apply(self, record):
        self.model = record.model
        self.serial_number = record.serial_number
        self.site = record.site
        self.country = record.country
        self.comments = record.comments
        self.status = record.status.value
        # a fresh list so SQLAlchemy sees the JSON column as changed
        self.history_json = [h.to_dict() for h in record.history]

    def to_record(self):
        return AssetRecord(
            asset_id=self.id,
            model=self.model or "",
            serial_number=self.serial_number or "",
            site=self.site or "",
            country=self.country or "",
            comments=self.comments or "",
            status=AssetStatus.coerce(self.status) or AssetStatus.NORMAL,
            created_at=int(self.created_at or 0),
            history=history_from_list(self.history_json),
        )

    def __repr__(self):
        return f"<AssetRow {self.id} {self.serial_number} @ {self.site}>"
