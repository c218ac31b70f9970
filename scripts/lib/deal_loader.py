"""
Deal Loader
============
Turns an uploaded export (JSON or spreadsheet) into a list of normalized,
immutable Deal records. This is the only place raw rows are handled; every
other module works on Deal.

Accepted input:
  - JSON: a top-level array of deal objects, or an object with a "deals" array
  - Tabular (.xlsx / .xlsm / .xls / .csv): first sheet only, row 1 is the
    header, each following row is one deal

Coercion never aborts an import: bad numbers become 0 (currency) or None
(day counts), missing identity fields get defaults, and only rows whose
name is blank are dropped.

Usage:
    from scripts.lib.deal_loader import load_deals, normalize
    deals = load_deals("exports/deals.xlsx")
"""
from __future__ import annotations

import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pandas as pd

from models.deal_models import Deal
from scripts.lib.errors import DataFetchError, FormatError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import is_blank, parse_number

logger = setup_logger(__name__)

JSON_FORMATS = {"json"}
SPREADSHEET_FORMATS = {"xlsx", "xlsm", "xls"}
CSV_FORMATS = {"csv"}
TABULAR_FORMATS = SPREADSHEET_FORMATS | CSV_FORMATS | {"rows"}

DEFAULT_BROKER = "Unknown Broker"
DEFAULT_STATUS = "Unknown"

CURRENCY_COLUMNS = ("deal_value",)
DAY_COUNT_COLUMNS = ("process days",)
FLAG_COLUMNS = ("From Rednote?", "From LifeX?")
TRUTHY_FLAGS = {"yes", "y", "true", "1"}

# Column headers the Deal model reads; other columns are carried no further.
DEAL_COLUMNS = {
    field.alias or name for name, field in Deal.model_fields.items()
}

UNSUPPORTED_MESSAGE = (
    "Unsupported file format. Please upload a JSON or Excel (.xlsx/.xls) file."
)


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------

def _cell_to_text(val: Any) -> Any:
    """Date cells -> ISO strings, blank strings -> None, everything else as-is."""
    if isinstance(val, (datetime, date)):
        if isinstance(val, datetime):
            return val.isoformat()
        return datetime(val.year, val.month, val.day).isoformat()
    if isinstance(val, str):
        stripped = val.strip()
        return stripped or None
    return val


def _coerce_currency(val: Any) -> float:
    number = parse_number(val)
    if number is None:
        return 0.0
    return max(number, 0.0)


def _coerce_day_count(val: Any):
    return parse_number(val)


def _coerce_flag(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    return str(val).strip().lower() in TRUTHY_FLAGS


def _coerce_record(bag: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Apply identity defaults and type coercion to one raw field bag.

    ``index`` is 1-based and only used for synthetic defaults.
    """
    record: Dict[str, Any] = {k: _cell_to_text(v) for k, v in bag.items()}

    deal_id = record.get("deal_id")
    record["deal_id"] = str(deal_id) if not is_blank(deal_id) else f"row_{index}"

    name = bag.get("deal_name")
    if name is None or name == "":
        record["deal_name"] = f"Deal {index}"
    else:
        record["deal_name"] = str(name)

    broker = record.get("broker_name")
    record["broker_name"] = str(broker) if not is_blank(broker) else DEFAULT_BROKER

    status = record.get("status")
    record["status"] = str(status) if not is_blank(status) else DEFAULT_STATUS

    for col in CURRENCY_COLUMNS:
        record[col] = _coerce_currency(record.get(col))
    for col in DAY_COUNT_COLUMNS:
        record[col] = _coerce_day_count(record.get(col))
    for col in FLAG_COLUMNS:
        record[col] = _coerce_flag(record.get(col))

    # Remaining text fields must be strings for the model.
    for key, val in list(record.items()):
        if key in CURRENCY_COLUMNS or key in DAY_COUNT_COLUMNS or key in FLAG_COLUMNS:
            continue
        if val is not None and not isinstance(val, str):
            record[key] = str(val)

    return record


def _build_deals(bags: Sequence[Dict[str, Any]]) -> List[Deal]:
    deals: List[Deal] = []
    dropped = 0
    for i, bag in enumerate(bags, start=1):
        record = _coerce_record(bag, i)
        if record["deal_name"].strip() == "":
            dropped += 1
            continue
        known = {k: v for k, v in record.items() if k in DEAL_COLUMNS}
        deals.append(Deal.model_validate(known))
    if dropped:
        logger.info("Dropped %d rows with a blank deal name", dropped)
    return deals


# ---------------------------------------------------------------------------
# Input shapes
# ---------------------------------------------------------------------------

def _json_records(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FormatError("Invalid JSON: file is not UTF-8 text", source_format="json") from e
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FormatError(f"Invalid JSON: {e.msg}", source_format="json") from e

    if isinstance(raw, list):
        records = raw
    elif isinstance(raw, dict) and isinstance(raw.get("deals"), list):
        records = raw["deals"]
    else:
        raise FormatError("Invalid JSON structure.", source_format="json")

    if not all(isinstance(r, dict) for r in records):
        raise FormatError("Invalid JSON structure: deals must be objects.", source_format="json")
    return records


def _is_blank_row(row: Sequence[Any]) -> bool:
    return all(is_blank(cell) for cell in row)


def _tabular_records(rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    rows = [list(r) for r in rows if r is not None and not _is_blank_row(r)]
    if len(rows) < 2:
        raise FormatError(
            "Excel file must have at least a header row and one data row.",
            source_format="tabular",
        )
    headers = ["" if h is None else str(h).strip() for h in rows[0]]
    records = []
    for row in rows[1:]:
        bag = {}
        for col, header in enumerate(headers):
            bag[header] = row[col] if col < len(row) else None
        records.append(bag)
    return records


def _frame_to_rows(frame: pd.DataFrame) -> List[List[Any]]:
    """DataFrame cells -> python values with NaN / NaT mapped to None."""
    cleaned = frame.astype(object).where(pd.notna(frame), None)
    return cleaned.values.tolist()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize(raw: Any, source_format: str) -> List[Deal]:
    """Normalize an already-read upload into Deals.

    Args:
        raw: JSON text / bytes / parsed object for "json"; a sequence of rows
            (header first) for tabular formats.
        source_format: "json", "rows", or a file extension.

    Raises:
        FormatError: input is not a recognized deal structure.
    """
    fmt = source_format.lower().lstrip(".")
    if fmt in JSON_FORMATS:
        bags = _json_records(raw)
    elif fmt in TABULAR_FORMATS:
        bags = _tabular_records(raw)
    else:
        raise FormatError(UNSUPPORTED_MESSAGE, source_format=fmt)

    deals = _build_deals(bags)
    logger.info("Normalized %d deals from %d %s records", len(deals), len(bags), fmt)
    return deals


def read_rows(path: Path) -> List[List[Any]]:
    """Read the first sheet of a spreadsheet / CSV as raw rows."""
    ext = path.suffix.lower().lstrip(".")
    try:
        if ext in CSV_FORMATS:
            frame = pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
        else:
            frame = pd.read_excel(path, sheet_name=0, header=None, dtype=object)
    except pd.errors.EmptyDataError as e:
        raise FormatError(
            "Excel file must have at least a header row and one data row.",
            source=str(path), source_format=ext,
        ) from e
    except Exception as e:
        # engines raise their own types for corrupt workbooks (BadZipFile, KeyError, OptionError)
        raise FormatError(f"Failed to read spreadsheet: {e}", source=str(path), source_format=ext) from e
    return _frame_to_rows(frame)


def load_deals(path: str | Path) -> List[Deal]:
    """Read and normalize an uploaded deals file.

    Raises:
        DataFetchError: the file does not exist.
        FormatError: unsupported extension or malformed content.
    """
    path = Path(path)
    if not path.exists():
        raise DataFetchError(f"File not found: {path}", source=str(path))

    ext = path.suffix.lower().lstrip(".")
    logger.info("Loading deals from %s", path)

    if ext in JSON_FORMATS:
        return normalize(path.read_bytes(), "json")
    if ext in SPREADSHEET_FORMATS or ext in CSV_FORMATS:
        return normalize(read_rows(path), ext)
    raise FormatError(UNSUPPORTED_MESSAGE, source=str(path), source_format=ext)
