"""
Deals Dashboard — Entry Point
===============================

Run:
    python main.py analyze exports/deals.xlsx --start 2025-06-02 --end 2025-06-08
    python main.py marketing exports/marketing.xlsm
    python main.py comment set weekly-performance-analysis "Dip is the Easter break"
    python main.py comment list
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger("deals-dashboard")


def _parse_args(argv=None) -> argparse.Namespace:
    from scripts import deals_analyzer, marketing_analyzer

    parser = argparse.ArgumentParser(description="Deals pipeline dashboard analytics.")
    sub = parser.add_subparsers(dest="command", required=True)

    deals_analyzer.build_arg_parser(sub.add_parser("analyze", help="Deals pipeline report"))
    marketing_analyzer.build_arg_parser(sub.add_parser("marketing", help="Marketing spend report"))

    comment = sub.add_parser("comment", help="Chart comments")
    comment.add_argument("action", choices=["get", "set", "delete", "list"])
    comment.add_argument("chart_id", nargs="?")
    comment.add_argument("content", nargs="?", default="")

    return parser.parse_args(argv)


def _run_comment(args: argparse.Namespace) -> int:
    from scripts.lib.session_store import ChartCommentStore

    store = ChartCommentStore()
    if args.action == "list":
        for chart_id, c in sorted(store.all().items()):
            print(f"{chart_id}\t{c.updated_at}\t{c.content}")
        return 0

    if not args.chart_id:
        logger.error("comment %s needs a chart id", args.action)
        return 2

    if args.action == "get":
        c = store.get(args.chart_id)
        print(c.content if c else "")
    elif args.action == "set":
        store.update(args.chart_id, args.content)
        logger.info("Saved comment for %s", args.chart_id)
    else:
        if not store.delete(args.chart_id):
            logger.warning("No comment for %s", args.chart_id)
    return 0


def main(argv=None) -> int:
    from scripts.lib.errors import HubError

    args = _parse_args(argv)

    if args.command == "comment":
        return _run_comment(args)

    logger.info("=" * 60)
    logger.info("  DEALS DASHBOARD — %s", args.command)
    logger.info("=" * 60)

    try:
        if args.command == "analyze":
            from scripts import deals_analyzer

            results = deals_analyzer.run_deals_analysis(
                args.path,
                filters=deals_analyzer.filters_from_args(args),
                sort_keys=args.sort,
                year=args.year,
                zoom_path=args.zoom,
                config={"group_treemap_by_broker": not args.flat_treemap},
                output_path=Path(args.output) if args.output else None,
            )
            logger.info("  Deals       : %d", results["record_count"])
            logger.info("  Filtered    : %d", len(results["deals"]))
        else:
            from scripts import marketing_analyzer

            filters, sort_key = marketing_analyzer.args_to_request(args)
            results = marketing_analyzer.run_marketing_analysis(
                args.path, filters, sort_key,
                output_path=Path(args.output) if args.output else None,
            )
            logger.info("  Rows        : %d", results["record_count"])
    except HubError as e:
        logger.error("%s failed: %s", args.command, e.message)
        return 1

    logger.info("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
