import csv
import io
import zipfile
from datetime import datetime, timezone

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter

from services.assets.errors import ValidationError


SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xlsm")

EXPORT_HEADER = [
    "Asset ID",
    "Model",
    "Serial Number",
    "Site",
    "Country",
    "Status",
    "Comments",
    "Created (UTC)",
    "Changes",
]


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return value


def read_csv_rows(data):
    if isinstance(data, bytes):
        data = data.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(data))
    rows = []
    for row in reader:
        clean = {k: _cell(v) for k, v in row.items() if k is not None}
        if any(str(v).strip() for v in clean.values()):
            rows.append(clean)
    return rows


def read_xlsx_rows(data):
    """First sheet, first row as headers; fully blank rows are skipped."""
    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        it = ws.iter_rows(values_only=True)
        header = next(it, None)
        if not header:
            return []
        names = [str(h).strip() if h is not None else "" for h in header]
        rows = []
        for values in it:
            row = {}
            for name, value in zip(names, values):
                if name:
                    row[name] = _cell(value)
            if any(str(v).strip() for v in row.values()):
                rows.append(row)
        return rows
    finally:
        wb.close()


def read_rows(filename, data):
    """Raw header -> cell mappings from an uploaded CSV or XLSX file."""
    name = (filename or "").strip().lower()
    if name.endswith(".csv"):
        try:
            return read_csv_rows(data)
        except (UnicodeDecodeError, csv.Error) as ex:
            raise ValidationError(f"File parsing failed: {ex}") from ex
    if name.endswith((".xlsx", ".xlsm")):
        try:
            return read_xlsx_rows(data)
        except (KeyError, ValueError, OSError, zipfile.BadZipFile) as ex:
            raise ValidationError(f"File parsing failed: {ex}") from ex
    raise ValidationError(
        f"Unsupported file type '{filename}'; expected one of {', '.join(SUPPORTED_EXTENSIONS)}"
    )


def _autosize_columns(ws):
    for column_cells in ws.columns:
        length = 0
        col = column_cells[0].column
        for cell in column_cells:
            cell_len = len(str(cell.value)) if cell.value is not None else 0
            if cell_len > length:
                length = cell_len
        ws.column_dimensions[get_column_letter(col)].width = min(length + 2, 60)


def export_xlsx(records):
    """Workbook with an Assets sheet and a History sheet, returned as bytes."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Assets"
    ws.append(EXPORT_HEADER)

    ws_hist = wb.create_sheet(title="History")
    ws_hist.append(["Asset ID", "Serial Number", "Timestamp (UTC)", "Field", "Old Value", "New Value"])

    for r in records:
        created = datetime.fromtimestamp(r.created_at / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        ws.append(
            [
                r.asset_id,
                r.model,
                r.serial_number,
                r.site,
                r.country,
                r.status.value,
                r.comments,
                created,
                max(0, len(r.history) - 1),
            ]
        )
        for h in r.history:
            ws_hist.append(
                [
                    r.asset_id,
                    r.serial_number,
                    datetime.fromtimestamp(h.timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
                    h.field,
                    "" if h.old_value is None else str(h.old_value),
                    "" if h.new_value is None else str(h.new_value),
                ]
            )

    _autosize_columns(ws)
    _autosize_columns(ws_hist)

    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out
