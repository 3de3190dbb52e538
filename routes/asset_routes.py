import logging

from flask import Blueprint, current_app, jsonify, request, send_file

import security
from services.assets import (
    AssetTrackError,
    InvalidArgumentError,
    ListView,
    ValidationError,
    aggregate,
    failure_hotspots,
    filter_records,
    normalize_rows,
)
from services.assets.extract import ExtractionClient
from services.assets.normalize import norm_str
from services.assets.query import ALL_STATUSES, DEFAULT_PAGE_SIZE
from services.assets.spreadsheet import export_xlsx, read_rows


logger = logging.getLogger("assettrack.routes")

assets_bp = Blueprint("assets", __name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _repository():
    return current_app.extensions["asset_repository"]


def _snapshot():
    return current_app.extensions["asset_snapshot"]


def _extractor():
    client = current_app.extensions.get("asset_extractor")
    if client is None:
        client = ExtractionClient()
        current_app.extensions["asset_extractor"] = client
    return client


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"'{name}' must be an integer", field=name)


def _json_object():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _report_status(report, ok_status=200):
    if report.ok:
        return ok_status
    if report.succeeded:
        return 207
    return 502


@assets_bp.errorhandler(AssetTrackError)
def _asset_error(ex):
    if ex.http_status >= 500:
        logger.warning("%s: %s", ex.__class__.__name__, ex.message)
    return jsonify(ex.to_dict()), ex.http_status


# ---------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------
@assets_bp.get("/api/assets")
@security.login_required_api
def list_assets():
    snapshot = _snapshot()
    if request.args.get("refresh") in {"1", "true", "yes"}:
        records = snapshot.reload(best_effort=False)
    else:
        records = snapshot.ensure_loaded()

    view = (
        ListView()
        .with_search(norm_str(request.args.get("q")))
        .with_status(norm_str(request.args.get("status")) or ALL_STATUSES)
        .with_page_size(_int_arg("per_page", DEFAULT_PAGE_SIZE))
        .with_page(_int_arg("page", 1))
    )
    out = view.apply(records).to_dict()
    out["ok"] = True
    return jsonify(out)


def _lookup(asset_id):
    record = _snapshot().find(asset_id)
    if record is None:
        record = _repository().get(asset_id)
    return record


@assets_bp.get("/api/assets/<asset_id>")
@security.login_required_api
def get_asset(asset_id):
    return jsonify({"ok": True, "asset": _lookup(asset_id).to_dict()})


@assets_bp.get("/api/assets/<asset_id>/history")
@security.login_required_api
def get_asset_history(asset_id):
    record = _lookup(asset_id)
    return jsonify({"ok": True, "id": record.asset_id, "history": [h.to_dict() for h in record.history]})


# ---------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------
def _add_rows(rows):
    repo = _repository()
    result = normalize_rows(rows, site_rule=repo.site_rule)
    rejected = [r.to_dict() for r in result.rejected]
    if not result.accepted:
        return jsonify(
            {
                "ok": False,
                "error": "No valid asset rows found",
                "rejected": rejected,
                "rejected_count": result.rejected_count,
            }
        ), 400

    report = repo.add_many(result.accepted)
    if report.records:
        _snapshot().apply_local_patch(added=report.records)

    return jsonify(
        {
            "ok": report.ok,
            "report": report.to_dict(),
            "created": [r.to_dict() for r in report.records],
            "rejected": rejected,
            "rejected_count": result.rejected_count,
        }
    ), _report_status(report, ok_status=201)


@assets_bp.post("/api/assets")
@security.login_required_api
def create_assets():
    data = request.get_json(silent=True)
    if isinstance(data, dict) and isinstance(data.get("assets"), list):
        rows = data["assets"]
    elif isinstance(data, dict):
        rows = [data]
    elif isinstance(data, list):
        rows = data
    else:
        raise InvalidArgumentError("Body must be an asset object or a list of assets")
    return _add_rows(rows)


@assets_bp.post("/api/assets/import")
@security.login_required_api
def import_assets():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded")
    rows = read_rows(upload.filename, upload.read())
    logger.info("import %s: %s rows read", upload.filename, len(rows))
    return _add_rows(rows)


@assets_bp.post("/api/assets/extract")
@security.login_required_api
def extract_assets():
    """
    Free text -> preview of normalized drafts. Nothing is saved; the caller
    posts the accepted rows back to /api/assets.
    """
    data = _json_object()
    rows = _extractor().extract_assets(data.get("text"))
    result = normalize_rows(rows, site_rule=_repository().site_rule)
    out = result.to_dict()
    out["ok"] = True
    return jsonify(out)


# ---------------------------------------------------------------------
# Update / Delete
# ---------------------------------------------------------------------
@assets_bp.patch("/api/assets/<asset_id>")
@security.login_required_api
def update_asset(asset_id):
    updates = request.get_json(silent=True)
    record = _repository().update_one(asset_id, updates)
    _snapshot().apply_local_patch(updated=[record])
    return jsonify({"ok": True, "asset": record.to_dict()})


@assets_bp.post("/api/assets/delete")
@security.login_required_api
def delete_assets():
    data = _json_object()
    ids = data.get("ids")
    if not isinstance(ids, list) or not all(isinstance(x, str) and x.strip() for x in ids):
        raise InvalidArgumentError("'ids' must be a list of asset ids", field="ids")

    snapshot = _snapshot()
    targets = []
    for asset_id in ids:
        record = snapshot.find(asset_id.strip())
        targets.append(record if record is not None else asset_id.strip())

    report = _repository().delete_many(targets)
    removed = [r.asset_id for r in report.records]
    if removed:
        snapshot.apply_local_patch(removed_ids=removed)
    return jsonify(
        {"ok": report.ok, "report": report.to_dict(), "deleted": removed}
    ), _report_status(report)


# ---------------------------------------------------------------------
# Dashboard / Reports
# ---------------------------------------------------------------------
@assets_bp.get("/api/assets/summary")
@security.login_required_api
def asset_summary():
    records = _snapshot().ensure_loaded()
    stats = aggregate(records)
    min_rma = max(1, _int_arg("min_rma", 2))
    return jsonify(
        {
            "ok": True,
            "summary": stats.to_dict(),
            "hotspots": failure_hotspots(stats, min_rma=min_rma),
        }
    )


def _filtered_records():
    """Snapshot narrowed by the same q/status arguments the list view takes."""
    return filter_records(
        _snapshot().ensure_loaded(),
        norm_str(request.args.get("q")),
        norm_str(request.args.get("status")) or ALL_STATUSES,
    )


@assets_bp.get("/api/assets/report")
@security.login_required_api
def asset_report():
    records = _filtered_records()
    text = _extractor().generate_report(records)
    return jsonify({"ok": True, "report": text, "asset_count": len(records)})


@assets_bp.get("/api/assets/export")
@security.login_required_api
def export_assets():
    records = _filtered_records()
    outfile = export_xlsx(records)
    return send_file(
        outfile,
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name="assets.xlsx",
    )


@assets_bp.get("/api/assets/status")
@security.login_required_api
def storage_status():
    snapshot = _snapshot()
    out = _repository().describe()
    out.update({"ok": True, "loaded": snapshot.loaded, "cached": len(snapshot.records())})
    return jsonify(out)
