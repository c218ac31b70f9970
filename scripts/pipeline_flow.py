"""
Pipeline Flow Builder
======================
Stage-transition graph for the Sankey view: one node per pipeline stage plus
a terminal "Lost" sink, with edges counting deals that moved between
consecutive reached stages (or dropped out to Lost) inside a date window.

A deal's reached stages are taken in process order, not timestamp order,
since stage dates in the source data are often entered out of sequence.

Node counts and edge weights are tallied independently:
    - a stage's count is the number of deals whose own date for that stage
      is in the window
    - an edge is counted when the *target* stage's date is in the window
    - Lost counts deals with status "Lost" and a lost date in the window

Output ordering never depends on dict insertion order: edges are sorted by
(source stage index, target stage index) and lost reasons by count.

Usage:
    python scripts/pipeline_flow.py exports/deals.xlsx --start 2025-01-01 --end 2025-03-31
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import Counter, defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

load_dotenv(BASE_DIR / ".env")

from models.deal_models import (  # noqa: E402
    DateWindow,
    Deal,
    DistributionItem,
    FlowEdge,
    FlowGraph,
    FlowNode,
    NodePosition,
)
from scripts.lib.stages import (  # noqa: E402
    LOST,
    PIPELINE_STAGES,
    SETTLED_STAGE,
    is_lost,
    lost_from_stage,
    reached_stages,
)
from scripts.lib.utils import day_in_range, is_blank, local_day  # noqa: E402

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default configuration
# ---------------------------------------------------------------------------
DEFAULT_CONFIG: Dict[str, Any] = {
    "width": 1200,
    "height": 500,
    "left_margin": 50,
    "right_margin": 300,
    "row_lift": 50,
    "bottom_margin": 50,
    "stage_height": {"min": 40, "max": 120, "scale": 100},
    "lost_height": {"min": 50, "max": 100, "scale": 80},
}

# Flow order: stages, then the Lost sink.
FLOW_ORDER: List[str] = PIPELINE_STAGES + [LOST]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _in_window(value: Optional[str], window: DateWindow) -> bool:
    """Parseable date whose local day is inside the window (open bounds allowed)."""
    if is_blank(value):
        return False
    day = local_day(value)
    if day is None:
        return False
    return day_in_range(day, window.start, window.end)


def _flow_rank(node_id: str) -> Tuple[int, str]:
    """Sort key: known flow nodes by position, pass-through labels after, by name."""
    try:
        return (FLOW_ORDER.index(node_id), "")
    except ValueError:
        return (len(FLOW_ORDER), node_id)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

def build_flow(deals: Sequence[Deal], window: Optional[DateWindow] = None) -> FlowGraph:
    """Nodes, transition / lost edges and lost-reason counts for ``window``."""
    window = window or DateWindow()

    stage_counts: Counter = Counter()
    edge_weights: Counter = Counter()
    lost_reasons: Counter = Counter()

    for deal in deals:
        stages = reached_stages(deal)

        for stage in stages:
            if _in_window(deal.stage_date(stage), window):
                stage_counts[stage] += 1

        for current, nxt in zip(stages, stages[1:]):
            if _in_window(deal.stage_date(nxt), window):
                edge_weights[(current, nxt)] += 1

        if is_lost(deal) and _in_window(deal.lost_date, window):
            edge_weights[(lost_from_stage(deal), LOST)] += 1
            stage_counts[LOST] += 1
            if deal.lost_reason:
                lost_reasons[deal.lost_reason] += 1

    nodes = [FlowNode(id=s, name=s, type="stage", count=stage_counts.get(s, 0)) for s in PIPELINE_STAGES]
    nodes.append(FlowNode(id=LOST, name=LOST, type="lost", count=stage_counts.get(LOST, 0)))

    edges = [
        FlowEdge(source=src, target=dst, value=value)
        for (src, dst), value in sorted(
            edge_weights.items(), key=lambda kv: (_flow_rank(kv[0][0]), _flow_rank(kv[0][1]))
        )
    ]
    reason_counts = dict(sorted(lost_reasons.items(), key=lambda kv: (-kv[1], kv[0])))

    logger.debug(
        "Flow built: %d edges, %d lost in window, %d lost reasons",
        len(edges), stage_counts.get(LOST, 0), len(reason_counts),
    )
    return FlowGraph(nodes=nodes, edges=edges, lost_reason_counts=reason_counts)


def lost_reason_distribution(graph: FlowGraph) -> List[DistributionItem]:
    """Lost reasons as chart items, most frequent first."""
    items = [DistributionItem(label=k, value=v) for k, v in graph.lost_reason_counts.items()]
    return sorted(items, key=lambda item: -item.value)


def lost_deals_in_window(
    deals: Sequence[Deal],
    window: Optional[DateWindow] = None,
    reason: Optional[str] = None,
) -> List[Deal]:
    """Lost deals behind the Lost node, optionally narrowed to one lost reason."""
    window = window or DateWindow()
    out = []
    for deal in deals:
        if not is_lost(deal) or not _in_window(deal.lost_date, window):
            continue
        if reason is not None and deal.lost_reason != reason:
            continue
        out.append(deal)
    return out


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

def _clamped_height(count: int, max_count: int, bounds: Dict[str, float]) -> float:
    return max(bounds["min"], min(bounds["max"], count / max_count * bounds["scale"]))


def layout_flow(graph: FlowGraph, config: Optional[Dict[str, Any]] = None) -> Dict[str, NodePosition]:
    """Node id -> position. Stages share a row; Lost sits below the Settled column."""
    config = {**DEFAULT_CONFIG, **(config or {})}
    width, height = config["width"], config["height"]

    stage_nodes = [n for n in graph.nodes if n.type == "stage"]
    step = (width - config["right_margin"]) / max(len(stage_nodes) - 1, 1)
    max_count = max([1] + [n.count for n in stage_nodes])

    positions: Dict[str, NodePosition] = {}
    for index, node in enumerate(stage_nodes):
        node_h = _clamped_height(node.count, max_count, config["stage_height"])
        positions[node.id] = NodePosition(
            x=config["left_margin"] + index * step,
            y=height / 2 - node_h / 2 - config["row_lift"],
            height=node_h,
        )

    lost = graph.node(LOST)
    if lost is not None:
        node_h = _clamped_height(lost.count, max_count, config["lost_height"])
        settled = positions.get(SETTLED_STAGE)
        positions[LOST] = NodePosition(
            x=settled.x if settled else width - config["right_margin"],
            y=height - node_h - config["bottom_margin"],
            height=node_h,
        )
    return positions


def edges_by_source(
    graph: FlowGraph,
    positions: Dict[str, NodePosition],
) -> Dict[str, List[FlowEdge]]:
    """Outgoing edges per positioned source, ordered by target y then target id.

    Edges touching a node without a position (pass-through lost labels) are
    left out, since there is nothing to draw them from.
    """
    grouped: Dict[str, List[FlowEdge]] = defaultdict(list)
    for edge in graph.edges:
        if edge.source in positions and edge.target in positions:
            grouped[edge.source].append(edge)
    return {
        source: sorted(edges, key=lambda e: (positions[e.target].y, e.target))
        for source, edges in sorted(grouped.items(), key=lambda kv: _flow_rank(kv[0]))
    }


# ============================================================================
# Standalone entry point
# ============================================================================

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build the pipeline flow graph for a deals export.")
    parser.add_argument("path", help="Deals file (.json / .xlsx / .xls / .csv)")
    parser.add_argument("--start", default=None, help="Window start, YYYY-MM-DD")
    parser.add_argument("--end", default=None, help="Window end, YYYY-MM-DD")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    from scripts.lib.deal_loader import load_deals
    from scripts.lib.errors import HubError

    args = _parse_args(argv)
    try:
        deals = load_deals(args.path)
    except HubError as e:
        logger.error("Could not load %s: %s", args.path, e.message)
        return 1

    graph = build_flow(deals, DateWindow(start=args.start, end=args.end))
    print(json.dumps(graph.model_dump(), indent=2))
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    sys.exit(main())
