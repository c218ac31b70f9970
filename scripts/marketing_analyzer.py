"""
Marketing Spend Analyzer
==========================
Reads an ad-spend export (JSON or spreadsheet) and produces the marketing
page metrics: totals, CTR / CPC / CPM, a daily series and spend per platform.

Headers may be English or Chinese; the first matching alias wins:
    date      <- date, 时间
    cost      <- cost, 消费, spend
    platform  <- platform, 平台

Rows with no positive cost are dropped.

Outputs to data/processed/marketing_metrics.json.

Usage:
    python scripts/marketing_analyzer.py exports/marketing.xlsm
    python scripts/marketing_analyzer.py exports/marketing.json --platform 聚光
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

load_dotenv(BASE_DIR / ".env")

PROCESSED_DIR = Path(os.getenv("DEALS_DATA_DIR", str(BASE_DIR / "data"))) / "processed"

from models.deal_models import DateWindow, SortKey  # noqa: E402
from models.marketing_models import (  # noqa: E402
    DailySpend,
    MarketingFilters,
    MarketingMetrics,
    MarketingRecord,
    PlatformSpend,
)
from scripts.lib.deal_loader import SPREADSHEET_FORMATS, CSV_FORMATS, read_rows  # noqa: E402
from scripts.lib.deal_query import sort_key_arg  # noqa: E402
from scripts.lib.errors import DataFetchError, FormatError, HubError  # noqa: E402
from scripts.lib.utils import atomic_write_json, local_day, parse_number, safe_div  # noqa: E402

logger = logging.getLogger(__name__)

HEADER_ALIASES: Dict[str, tuple] = {
    "date": ("date", "时间"),
    "cost": ("cost", "消费", "spend"),
    "platform": ("platform", "平台"),
}
OPTIONAL_NUMBERS = ("impressions", "clicks", "conversions", "ctr", "cpc", "cpm")
SORT_FIELDS = ("date", "cost", "platform") + OPTIONAL_NUMBERS

UNSUPPORTED_MESSAGE = "Unsupported file format. Please upload a JSON, Excel (.xlsx/.xls/.xlsm) file."


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _first(bag: Dict[str, Any], keys: Sequence[str]) -> Any:
    """First alias holding a non-empty value."""
    for key in keys:
        val = bag.get(key)
        if val not in (None, "", 0):
            return val
    return None


def _record_date(val: Any) -> str:
    if val is None:
        return date.today().isoformat()
    return local_day(val) or str(val).strip()


def _optional_number(val: Any) -> Optional[float]:
    """Positive number or None; zero counts as missing."""
    number = parse_number(val)
    return number if number else None


def _coerce_row(bag: Dict[str, Any], index: int) -> Optional[MarketingRecord]:
    cost = parse_number(_first(bag, HEADER_ALIASES["cost"])) or 0.0
    if cost <= 0:
        return None
    platform = _first(bag, HEADER_ALIASES["platform"])
    return MarketingRecord(
        id=str(bag.get("id") or f"row_{index}"),
        date=_record_date(_first(bag, HEADER_ALIASES["date"])),
        cost=cost,
        platform=str(platform) if platform is not None else "Unknown",
        **{field: _optional_number(bag.get(field)) for field in OPTIONAL_NUMBERS},
    )


def normalize_marketing(bags: Sequence[Dict[str, Any]]) -> List[MarketingRecord]:
    records = []
    for i, bag in enumerate(bags, start=1):
        record = _coerce_row(bag, i)
        if record is not None:
            records.append(record)
    dropped = len(bags) - len(records)
    if dropped:
        logger.info("Dropped %d marketing rows without a positive cost", dropped)
    return records


def _json_bags(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, list):
        bags = raw
    elif isinstance(raw, dict) and isinstance(raw.get("data"), list):
        bags = raw["data"]
    else:
        raise FormatError("Invalid JSON structure.", source_format="json")
    if not all(isinstance(b, dict) for b in bags):
        raise FormatError("Invalid JSON structure: rows must be objects.", source_format="json")
    return bags


def _row_bags(rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    if len(rows) < 2:
        raise FormatError(
            "Excel file must have at least a header row and one data row.",
            source_format="tabular",
        )
    headers = ["" if h is None else str(h).strip() for h in rows[0]]
    return [
        {h: (row[i] if i < len(row) else None) for i, h in enumerate(headers)}
        for row in rows[1:]
    ]


def load_marketing(path: str | Path) -> List[MarketingRecord]:
    """Read and normalize a marketing export.

    Raises:
        DataFetchError: the file does not exist.
        FormatError: unsupported extension or malformed content.
    """
    path = Path(path)
    if not path.exists():
        raise DataFetchError(f"File not found: {path}", source=str(path))

    ext = path.suffix.lower().lstrip(".")
    if ext == "json":
        try:
            raw = json.loads(path.read_text(encoding="utf-8-sig"))
        except UnicodeDecodeError as e:
            raise FormatError("Invalid JSON: file is not UTF-8 text", source=str(path), source_format=ext) from e
        except json.JSONDecodeError as e:
            raise FormatError(f"Invalid JSON: {e.msg}", source=str(path), source_format=ext) from e
        bags = _json_bags(raw)
    elif ext in SPREADSHEET_FORMATS or ext in CSV_FORMATS:
        bags = _row_bags(read_rows(path))
    else:
        raise FormatError(UNSUPPORTED_MESSAGE, source=str(path), source_format=ext)

    records = normalize_marketing(bags)
    logger.info("Loaded %d marketing rows from %s", len(records), path)
    return records


# ---------------------------------------------------------------------------
# Filter / sort
# ---------------------------------------------------------------------------

def filter_marketing(records: Sequence[MarketingRecord], filters: MarketingFilters) -> List[MarketingRecord]:
    term = filters.search.lower()
    start, end = filters.window.start, filters.window.end
    out = []
    for rec in records:
        if term and term not in rec.platform.lower() and term not in rec.date:
            continue
        if filters.platform != "all" and rec.platform != filters.platform:
            continue
        if start and rec.date < start:
            continue
        if end and rec.date > end:
            continue
        out.append(rec)
    return out


def sort_marketing(records: Sequence[MarketingRecord], key: Optional[SortKey]) -> List[MarketingRecord]:
    """Single-key sort; missing values go last in either direction."""
    if key is None or key.field not in SORT_FIELDS:
        return list(records)
    present = [r for r in records if getattr(r, key.field) is not None]
    missing = [r for r in records if getattr(r, key.field) is None]
    present.sort(key=lambda r: getattr(r, key.field), reverse=key.direction == "desc")
    return present + missing


def platforms(records: Sequence[MarketingRecord]) -> List[str]:
    return sorted({r.platform for r in records})


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class MarketingAnalyzer:
    """Spend totals and efficiency ratios over a filtered record set."""

    def analyze(self, records: Sequence[MarketingRecord]) -> MarketingMetrics:
        cost = sum(r.cost for r in records)
        impressions = sum(r.impressions or 0 for r in records)
        clicks = sum(r.clicks or 0 for r in records)
        conversions = sum(r.conversions or 0 for r in records)
        return MarketingMetrics(
            total_cost=cost,
            total_impressions=impressions,
            total_clicks=clicks,
            total_conversions=conversions,
            avg_ctr=safe_div(clicks, impressions) * 100,
            avg_cpc=safe_div(cost, clicks),
            avg_cpm=safe_div(cost, impressions) * 1000,
            campaign_count=len(records),
        )

    def daily(self, records: Sequence[MarketingRecord]) -> List[DailySpend]:
        days: Dict[str, Dict[str, float]] = defaultdict(
            lambda: {"cost": 0.0, "impressions": 0.0, "clicks": 0.0, "conversions": 0.0}
        )
        for r in records:
            day = days[r.date]
            day["cost"] += r.cost
            day["impressions"] += r.impressions or 0
            day["clicks"] += r.clicks or 0
            day["conversions"] += r.conversions or 0
        return [DailySpend(date=d, **days[d]) for d in sorted(days)]

    def by_platform(self, records: Sequence[MarketingRecord]) -> List[PlatformSpend]:
        totals: Dict[str, PlatformSpend] = {}
        for r in records:
            current = totals.get(r.platform) or PlatformSpend(platform=r.platform)
            totals[r.platform] = current.model_copy(
                update={"cost": current.cost + r.cost, "campaigns": current.campaigns + 1}
            )
        return list(totals.values())


def run_marketing_analysis(
    path: str | Path,
    filters: Optional[MarketingFilters] = None,
    sort_key: Optional[SortKey] = None,
    output_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """Load a marketing export, compute every view and save the output."""
    logger.info("=== Marketing analysis: %s ===", path)
    filters = filters or MarketingFilters()

    records = load_marketing(path)
    filtered = filter_marketing(records, filters)
    analyzer = MarketingAnalyzer()

    output = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "source_file": str(path),
        "record_count": len(records),
        "filters": filters.model_dump(),
        "platforms": platforms(records),
        "metrics": analyzer.analyze(filtered).model_dump(),
        "daily": [d.model_dump() for d in analyzer.daily(filtered)],
        "by_platform": [p.model_dump() for p in analyzer.by_platform(filtered)],
        "rows": [r.model_dump() for r in sort_marketing(filtered, sort_key)],
    }

    output_path = Path(output_path) if output_path else PROCESSED_DIR / "marketing_metrics.json"
    if atomic_write_json(output, output_path):
        logger.info("Marketing analysis saved to %s", output_path)
    return output


# ============================================================================
# Standalone entry point
# ============================================================================

def build_arg_parser(parser: Optional[argparse.ArgumentParser] = None) -> argparse.ArgumentParser:
    parser = parser or argparse.ArgumentParser(description="Marketing spend analytics.")
    parser.add_argument("path", help="Marketing file (.json / .xlsx / .xls / .xlsm / .csv)")
    parser.add_argument("--search", default="", help="Substring of platform or date")
    parser.add_argument("--platform", default="all")
    parser.add_argument("--start", default=None, help="Window start, YYYY-MM-DD")
    parser.add_argument("--end", default=None, help="Window end, YYYY-MM-DD")
    parser.add_argument("--sort", type=sort_key_arg, default=None, metavar="FIELD[:asc|desc]")
    parser.add_argument("--output", default=None, help="Output JSON path")
    return parser


def args_to_request(args: argparse.Namespace):
    filters = MarketingFilters(
        search=args.search,
        platform=args.platform,
        window=DateWindow(start=args.start, end=args.end),
    )
    return filters, args.sort


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    filters, sort_key = args_to_request(args)
    try:
        results = run_marketing_analysis(
            args.path, filters, sort_key,
            output_path=Path(args.output) if args.output else None,
        )
    except HubError as e:
        logger.error("Marketing analysis failed: %s", e.message)
        return 1

    print(f"\nMarketing analysis complete. {results['record_count']} rows processed.")
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    sys.exit(main())
