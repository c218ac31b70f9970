"""
Settled-value treemap: hierarchy builder, strip layout and zoom path.

Only settled deals with a positive value take part. The hierarchy is either
root -> broker -> deal, or root -> deal when grouping is off.

Layout is a greedy strip packing: children are placed largest first, each
taking its share of the parent's area along the longer remaining side. Every
rectangle is clamped to at least MIN_SIDE on both axes so labels stay legible,
which means sums of child areas can exceed the parent once the clamp kicks in.

Usage:
    from scripts.lib.treemap import build_hierarchy, current_view
    root = build_hierarchy(deals, group_by_broker=True)
    view = current_view(root, zoom_path, 800, 500)
"""
from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from models.deal_models import Deal, TreemapNode
from scripts.lib.stages import is_settled

MIN_SIDE = 20.0
ROOT_ID = "root"
ROOT_NAME = "All Settlements"


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------

def _deal_leaf(deal: Deal, depth: int) -> TreemapNode:
    return TreemapNode(
        id=deal.id,
        name=deal.name,
        value=deal.value,
        depth=depth,
        deal_id=deal.id,
    )


def build_hierarchy(deals: Sequence[Deal], group_by_broker: bool = True) -> Optional[TreemapNode]:
    """Value tree over settled, positive-value deals; None when there are none."""
    settled = [d for d in deals if is_settled(d) and d.value > 0]
    if not settled:
        return None
    total = sum(d.value for d in settled)

    if not group_by_broker:
        children = [_deal_leaf(d, depth=1) for d in settled]
        return TreemapNode(id=ROOT_ID, name=ROOT_NAME, value=total, children=children)

    groups: Dict[str, List[Deal]] = defaultdict(list)
    for deal in settled:
        groups[deal.broker_name].append(deal)

    children = [
        TreemapNode(
            id=broker,
            name=broker,
            value=sum(d.value for d in broker_deals),
            depth=1,
            children=[_deal_leaf(d, depth=2) for d in broker_deals],
        )
        for broker, broker_deals in groups.items()
    ]
    return TreemapNode(id=ROOT_ID, name=ROOT_NAME, value=total, children=children)


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

def layout(node: TreemapNode, x: float, y: float, width: float, height: float) -> TreemapNode:
    """Positioned copy of ``node`` and its subtree inside the given rectangle.

    Children keep their original order in the returned tree; only placement
    follows descending value. A zero-value child set is left unplaced.
    """
    if not node.children:
        return node.model_copy(update={"x": x, "y": y, "width": width, "height": height})

    total = sum(child.value for child in node.children)
    if total == 0:
        return node.model_copy(update={"x": x, "y": y, "width": width, "height": height})

    placed: Dict[int, TreemapNode] = {}
    order = sorted(range(len(node.children)), key=lambda i: node.children[i].value, reverse=True)

    cur_x, cur_y = x, y
    rem_w, rem_h = width, height
    for i in order:
        child = node.children[i]
        area = child.value / total * width * height
        wide = rem_w >= rem_h
        if wide:
            child_w = area / rem_h if rem_h else 0.0
            child_h = rem_h
            if child_w > rem_w:
                child_w = rem_w
                child_h = area / child_w if child_w else 0.0
        else:
            child_h = area / rem_w if rem_w else 0.0
            child_w = rem_w
            if child_h > rem_h:
                child_h = rem_h
                child_w = area / child_h if child_h else 0.0
        child_w = max(child_w, MIN_SIDE)
        child_h = max(child_h, MIN_SIDE)

        placed[i] = layout(child, cur_x, cur_y, child_w, child_h)

        if wide:
            cur_x += child_w
            rem_w -= child_w
        else:
            cur_y += child_h
            rem_h -= child_h

    children = [placed[i] for i in range(len(node.children))]
    return node.model_copy(
        update={"x": x, "y": y, "width": width, "height": height, "children": children}
    )


# ---------------------------------------------------------------------------
# Zoom path
# ---------------------------------------------------------------------------

def resolve_zoom(root: TreemapNode, path: Sequence[str]) -> TreemapNode:
    """Follow ``path`` from the root, stopping at the first id that is not a child."""
    current = root
    for segment in path:
        child = next((c for c in current.children if c.id == segment), None)
        if child is None:
            break
        current = child
    return current


def zoom_in(path: Sequence[str], node: TreemapNode) -> List[str]:
    """Push ``node`` onto the path; leaves cannot be zoomed into."""
    if not node.children:
        return list(path)
    return [*path, node.id]


def zoom_out(path: Sequence[str]) -> List[str]:
    return list(path[:-1])


def zoom_to_root(path: Sequence[str] = ()) -> List[str]:
    return []


def current_view(
    root: Optional[TreemapNode],
    path: Sequence[str],
    width: float,
    height: float,
) -> Optional[TreemapNode]:
    """The node addressed by ``path``, laid out against the full viewport."""
    if root is None:
        return None
    return layout(resolve_zoom(root, path), 0.0, 0.0, width, height)
