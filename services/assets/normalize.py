import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from services.assets.errors import InvalidArgumentError, ValidationError
from services.assets.records import (
    REQUIRED_FIELDS,
    AssetDraft,
    AssetPatch,
    AssetStatus,
    history_from_list,
)


SITE_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")
_KEY_RE = re.compile(r"[^a-z0-9]")

# normalized header -> canonical attribute
HEADER_ALIASES = {
    "model": "model",
    "assetmodel": "model",
    "product": "model",
    "modelname": "model",
    "modelnumber": "model",
    "serialnumber": "serial_number",
    "serial": "serial_number",
    "sn": "serial_number",
    "serialno": "serial_number",
    "siteid": "site",
    "site": "site",
    "location": "site",
    "country": "country",
    "region": "country",
    "comments": "comments",
    "comment": "comments",
    "notes": "comments",
    "status": "status",
    "rmastatus": "status",
}

# evaluated top to bottom; "not eligible" must stay ahead of "eligible"
STATUS_HINTS = (
    ("request", AssetStatus.RMA_REQUESTED),
    ("ship", AssetStatus.RMA_SHIPPED),
    ("not eligible", AssetStatus.RMA_NOT_ELIGIBLE),
    ("eligible", AssetStatus.RMA_ELIGIBLE),
    ("deprecated", AssetStatus.DEPRECATED),
)

# keys that may appear in an update payload but are never editable
IMMUTABLE_KEYS = {"id", "assetid", "identity", "createdat", "history"}


def norm_str(value):
    if value is None:
        return ""
    return str(value).strip()


def norm_lower(value):
    return norm_str(value).lower()


def norm_key(value):
    return _KEY_RE.sub("", norm_lower(value))


def is_valid_site(value):
    return bool(SITE_PATTERN.match(norm_str(value)))


def infer_status(value):
    text = " ".join(norm_lower(value).split())
    if not text:
        return AssetStatus.NORMAL

    exact = AssetStatus.coerce(text)
    if exact is not None:
        return exact

    for needle, status in STATUS_HINTS:
        if needle in text:
            return status
    return AssetStatus.UNKNOWN


def resolve_headers(row):
    """
    Maps a raw row onto canonical attribute names. The first column that
    resolves to an attribute wins; later duplicates are ignored.
    """
    out = {}
    for raw_key, value in row.items():
        attr = HEADER_ALIASES.get(norm_key(raw_key))
        if attr is None or attr in out:
            continue
        out[attr] = value
    return out


@dataclass(frozen=True)
class RejectedRow:
    index: int
    row: dict
    reason: str

    def to_dict(self):
        return {"index": self.index, "reason": self.reason, "row": self.row}


@dataclass
class NormalizeResult:
    accepted: list = field(default_factory=list)
    rejected: list = field(default_factory=list)

    @property
    def rejected_count(self):
        return len(self.rejected)

    def to_dict(self):
        return {
            "accepted": [d.to_dict() for d in self.accepted],
            "rejected": [r.to_dict() for r in self.rejected],
            "accepted_count": len(self.accepted),
            "rejected_count": self.rejected_count,
        }


def normalize_row(row, site_rule=True):
    """
    Turns one raw mapping into an AssetDraft.
    Raises ValidationError when a required field is empty or the site
    fails the alphabetic-first rule.
    """
    if not isinstance(row, Mapping):
        raise ValidationError("Row is not a key/value mapping")

    values = resolve_headers(row)
    model = norm_str(values.get("model"))
    serial = norm_str(values.get("serial_number"))
    site = norm_str(values.get("site"))

    missing = [name for name, v in zip(REQUIRED_FIELDS, (model, serial, site)) if not v]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    if site_rule and not is_valid_site(site):
        raise ValidationError(f"Invalid site '{site}': must start with a letter")

    history = row.get("history")
    return AssetDraft(
        model=model,
        serial_number=serial,
        site=site,
        country=norm_str(values.get("country")),
        comments=norm_str(values.get("comments")),
        status=infer_status(values.get("status")),
        history=history_from_list(history) if isinstance(history, list) else (),
    )


def normalize_rows(rows, site_rule=True):
    result = NormalizeResult()
    for index, row in enumerate(rows or []):
        try:
            result.accepted.append(normalize_row(row, site_rule=site_rule))
        except ValidationError as ex:
            snapshot = dict(row) if isinstance(row, Mapping) else {"value": repr(row)}
            result.rejected.append(RejectedRow(index=index, row=snapshot, reason=ex.message))
    return result


_PATCH_KEYS = {
    "model": "model",
    "serialnumber": "serial_number",
    "site": "site",
    "siteid": "site",
    "country": "country",
    "comments": "comments",
    "status": "status",
}


def build_patch(updates, site_rule=True):
    """
    Validates a loose update payload into an AssetPatch.

    Keys are matched ignoring case and separators, so both serialNumber and
    serial_number are accepted. id, createdAt and history are dropped.
    Unknown keys and non-scalar values raise InvalidArgumentError.
    """
    if isinstance(updates, AssetPatch):
        return updates
    if not isinstance(updates, Mapping):
        raise InvalidArgumentError("Updates must be a key/value mapping")

    values = {}
    for raw_key, raw_value in updates.items():
        key = norm_key(raw_key)
        if key in IMMUTABLE_KEYS:
            continue
        attr = _PATCH_KEYS.get(key)
        if attr is None:
            raise InvalidArgumentError(f"Unknown field '{raw_key}'", field=str(raw_key))
        if raw_value is None:
            continue
        if isinstance(raw_value, (dict, list, tuple, set)):
            raise InvalidArgumentError(f"Field '{raw_key}' must be a scalar value", field=str(raw_key))

        if attr == "status":
            status = AssetStatus.coerce(raw_value)
            if status is None:
                raise InvalidArgumentError(f"Unknown status '{raw_value}'", field="status")
            values[attr] = status
            continue

        value = norm_str(raw_value)
        if attr in REQUIRED_FIELDS and not value:
            raise ValidationError(f"Field '{raw_key}' cannot be empty", field=str(raw_key))
        if attr == "site" and site_rule and not is_valid_site(value):
            raise ValidationError(f"Invalid site '{value}': must start with a letter", field="site")
        values[attr] = value

    return AssetPatch(**values)
