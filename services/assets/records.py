import dataclasses
import re
from decimal import Decimal
from enum import Enum
from typing import Optional


_COMPACT_RE = re.compile(r"[^a-z0-9]")


class AssetStatus(str, Enum):
    NORMAL = "Normal"
    RMA_REQUESTED = "RMA Requested"
    RMA_SHIPPED = "RMA Shipped"
    RMA_ELIGIBLE = "RMA Eligible"
    RMA_NOT_ELIGIBLE = "RMA Not Eligible"
    DEPRECATED = "Deprecated"
    UNKNOWN = "Unknown"

    @classmethod
    def coerce(cls, value):
        """
        Exact, case-insensitive lookup by display value or member name.
        "rma requested", "RMA_REQUESTED" and "RMARequested" all resolve to
        RMA_REQUESTED. Returns None when nothing matches.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        key = _COMPACT_RE.sub("", str(value).lower())
        if not key:
            return None
        for member in cls:
            if key == _COMPACT_RE.sub("", member.value.lower()):
                return member
            if key == _COMPACT_RE.sub("", member.name.lower()):
                return member
        return None


RMA_STATUSES = (
    AssetStatus.RMA_REQUESTED,
    AssetStatus.RMA_SHIPPED,
    AssetStatus.RMA_ELIGIBLE,
    AssetStatus.RMA_NOT_ELIGIBLE,
)

# attribute name -> key used in history entries and at rest
FIELD_WIRE_NAMES = {
    "model": "model",
    "serial_number": "serialNumber",
    "site": "site",
    "country": "country",
    "comments": "comments",
    "status": "status",
}
EDITABLE_FIELDS = tuple(FIELD_WIRE_NAMES)
REQUIRED_FIELDS = ("model", "serial_number", "site")

CREATION_FIELD = "System"
CREATION_MARKER = "Initial Asset Registration"


def _as_int(value, default=0):
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float, Decimal)):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _plain(value):
    if isinstance(value, AssetStatus):
        return value.value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


@dataclasses.dataclass(frozen=True)
class HistoryEntry:
    timestamp: int
    field: str
    old_value: object = None
    new_value: object = None

    @property
    def is_creation(self):
        return self.old_value is None

    def to_dict(self):
        return {
            "timestamp": self.timestamp,
            "field": self.field,
            "oldValue": _plain(self.old_value),
            "newValue": _plain(self.new_value),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            timestamp=_as_int(data.get("timestamp")),
            field=str(data.get("field") or ""),
            old_value=_plain(data.get("oldValue", data.get("old_value"))),
            new_value=_plain(data.get("newValue", data.get("new_value"))),
        )


def history_from_list(items):
    out = []
    for item in items or []:
        if isinstance(item, HistoryEntry):
            out.append(item)
        elif isinstance(item, dict):
            out.append(HistoryEntry.from_dict(item))
    return tuple(out)


@dataclasses.dataclass(frozen=True)
class AssetDraft:
    """A validated record that has not been assigned an identity yet."""

    model: str
    serial_number: str
    site: str
    country: str = ""
    comments: str = ""
    status: AssetStatus = AssetStatus.NORMAL
    history: tuple = ()

    def to_dict(self):
        return {
            "model": self.model,
            "serialNumber": self.serial_number,
            "site": self.site,
            "country": self.country,
            "comments": self.comments,
            "status": self.status.value,
            "history": [h.to_dict() for h in self.history],
        }


@dataclasses.dataclass(frozen=True)
class AssetRecord:
    asset_id: str
    model: str
    serial_number: str
    site: str
    country: str = ""
    comments: str = ""
    status: AssetStatus = AssetStatus.NORMAL
    created_at: int = 0
    history: tuple = ()

    def to_dict(self):
        return {
            "id": self.asset_id,
            "model": self.model,
            "serialNumber": self.serial_number,
            "site": self.site,
            "country": self.country,
            "comments": self.comments,
            "status": self.status.value,
            "createdAt": self.created_at,
            "history": [h.to_dict() for h in self.history],
        }

    @classmethod
    def from_dict(cls, data):
        """
        Reads a stored item. Older files used siteID / rmaStatus and
        carried no history; missing status falls back to Normal.
        """
        serial = str(data.get("serialNumber") or data.get("serial_number") or "").strip()
        asset_id = str(data.get("id") or data.get("asset_id") or "").strip() or serial
        site = data.get("site") or data.get("siteID") or data.get("siteId") or ""
        status = AssetStatus.coerce(data.get("status") or data.get("rmaStatus"))
        return cls(
            asset_id=asset_id,
            model=str(data.get("model") or "").strip(),
            serial_number=serial,
            site=str(site).strip(),
            country=str(data.get("country") or "").strip(),
            comments=str(data.get("comments") or "").strip(),
            status=status or AssetStatus.NORMAL,
            created_at=_as_int(data.get("createdAt", data.get("created_at"))),
            history=history_from_list(data.get("history")),
        )


@dataclasses.dataclass(frozen=True)
class AssetPatch:
    """Closed set of editable fields; None means 'not part of this update'."""

    model: Optional[str] = None
    serial_number: Optional[str] = None
    site: Optional[str] = None
    country: Optional[str] = None
    comments: Optional[str] = None
    status: Optional[AssetStatus] = None

    def changes(self):
        out = {}
        for attr in EDITABLE_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                out[attr] = value
        return out

    def __bool__(self):
        return bool(self.changes())
