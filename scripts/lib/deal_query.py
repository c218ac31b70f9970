"""
Deal filtering and multi-key sorting.

Filters are a conjunction of selectors (search text, status, broker, lead
source, date window). The date window is checked against one of two date
references, chosen by the view asking:

  - reference_date: latest_date, falling back to the settled date, then created_time
  - created_date:   created_time only (the "new deals" view)

Both compare local calendar days (YYYY-MM-DD strings), so a deal logged late
in the evening is not pushed into the next day by a UTC conversion.

Sorting takes an ordered list of SortKey; the first key is primary, ties fall
through, and remaining ties keep input order.
"""
from __future__ import annotations

import argparse
from functools import cmp_to_key
from typing import Any, Callable, Iterable, List, Optional, Sequence

from models.deal_models import Deal, DateWindow, DealFilters, SortKey
from scripts.lib.stages import (
    SOURCE_FILTER_VALUES,
    display_status,
    lead_source,
    status_rank,
)
from scripts.lib.utils import day_in_range, epoch_ms, is_blank, local_day

ALL = "all"

DEFAULT_SORT: List[SortKey] = [
    SortKey(field="broker_name", direction="asc"),
    SortKey(field="status", direction="asc"),
    SortKey(field="deal_value", direction="desc"),
]


# ---------------------------------------------------------------------------
# Date references
# ---------------------------------------------------------------------------

def reference_date(deal: Deal) -> Optional[str]:
    """General reference date: latest activity, else settlement, else creation."""
    for candidate in (deal.latest_date, deal.settled, deal.created_time):
        if not is_blank(candidate):
            return candidate
    return None


def created_date(deal: Deal) -> Optional[str]:
    return None if is_blank(deal.created_time) else deal.created_time


DateRef = Callable[[Deal], Optional[str]]


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def matches_search(deal: Deal, search: str) -> bool:
    term = (search or "").lower()
    if not term:
        return True
    return term in (deal.name or "").lower() or term in (deal.broker_name or "").lower()


def matches_status(deal: Deal, status: str) -> bool:
    return status == ALL or deal.status == status


def matches_broker(deal: Deal, broker: str) -> bool:
    return broker == ALL or deal.broker_name == broker


def matches_source(deal: Deal, source: str) -> bool:
    if source == ALL:
        return True
    wanted = SOURCE_FILTER_VALUES.get(source.lower(), source)
    return lead_source(deal) == wanted


def matches_window(deal: Deal, window: DateWindow, date_ref: DateRef = reference_date) -> bool:
    """Inclusive window check; a deal without a usable date fails any bounded window."""
    if window.is_open:
        return True
    return day_in_range(local_day(date_ref(deal)), window.start, window.end)


# ---------------------------------------------------------------------------
# Filter Engine
# ---------------------------------------------------------------------------

def filter_deals(
    deals: Iterable[Deal],
    filters: DealFilters,
    date_ref: DateRef = reference_date,
    apply_source: bool = True,
) -> List[Deal]:
    """Deals matching every selector, in input order.

    ``apply_source=False`` is the KPI-card variant, which ignores the lead
    source selector.
    """
    out = []
    for deal in deals:
        if not matches_search(deal, filters.search):
            continue
        if not matches_status(deal, filters.status):
            continue
        if not matches_broker(deal, filters.broker):
            continue
        if apply_source and not matches_source(deal, filters.source):
            continue
        if not matches_window(deal, filters.window, date_ref):
            continue
        out.append(deal)
    return out


def filter_by_window(
    deals: Iterable[Deal],
    window: DateWindow,
    date_ref: DateRef = created_date,
) -> List[Deal]:
    """Window-only filter. Unlike filter_deals, a missing date always fails."""
    out = []
    for deal in deals:
        day = local_day(date_ref(deal))
        if day is None:
            continue
        if day_in_range(day, window.start, window.end):
            out.append(deal)
    return out


# ---------------------------------------------------------------------------
# Sort Engine
# ---------------------------------------------------------------------------

def _text(val: Any) -> str:
    return "" if val is None else str(val)


SORT_FIELDS: dict[str, Callable[[Deal], Any]] = {
    "deal_name": lambda d: _text(d.name),
    "broker_name": lambda d: _text(d.broker_name),
    "deal_value": lambda d: d.value or 0,
    "status": lambda d: status_rank(display_status(d)),
    "source": lead_source,
    "process_days": lambda d: d.process_days or 0,
    "latest_date": lambda d: epoch_ms(d.latest_date),
    "created_time": lambda d: epoch_ms(d.created_time),
    "lost_reason": lambda d: _text(d.lost_reason),
    "lost_process": lambda d: _text(d.lost_from_process),
}


def _compare_values(a: Any, b: Any) -> int:
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return (a > b) - (a < b)
    a, b = str(a), str(b)
    ka, kb = (a.casefold(), a), (b.casefold(), b)
    return (ka > kb) - (ka < kb)


def sort_deals(deals: Sequence[Deal], keys: Sequence[SortKey]) -> List[Deal]:
    """Stable multi-key sort. Unknown fields are skipped."""
    active = [k for k in keys if k.field in SORT_FIELDS]
    if not active:
        return list(deals)

    def compare(a: Deal, b: Deal) -> int:
        for key in active:
            getter = SORT_FIELDS[key.field]
            result = _compare_values(getter(a), getter(b))
            if result:
                return result if key.direction == "asc" else -result
        return 0

    return sorted(deals, key=cmp_to_key(compare))


def sort_key_arg(value: str) -> SortKey:
    """argparse type for ``FIELD[:asc|desc]``."""
    field, _, direction = value.partition(":")
    direction = (direction or "asc").lower()
    if not field or direction not in ("asc", "desc"):
        raise argparse.ArgumentTypeError(f"invalid sort key {value!r}, expected FIELD[:asc|desc]")
    return SortKey(field=field, direction=direction)


def toggle_sort(keys: Sequence[SortKey], field: str, multi: bool = False) -> List[SortKey]:
    """Next sort-key list after a header click on ``field``.

    Single mode replaces the list: absent -> asc, asc -> desc, desc -> unsorted.
    Multi mode (ctrl-click) edits ``field`` in place and keeps the other keys.
    """
    existing = next((i for i, k in enumerate(keys) if k.field == field), None)

    if not multi:
        if existing is None:
            return [SortKey(field=field, direction="asc")]
        if keys[existing].direction == "asc":
            return [SortKey(field=field, direction="desc")]
        return []

    updated = list(keys)
    if existing is None:
        updated.append(SortKey(field=field, direction="asc"))
    elif keys[existing].direction == "asc":
        updated[existing] = SortKey(field=field, direction="desc")
    else:
        del updated[existing]
    return updated


def sort_position(keys: Sequence[SortKey], field: str) -> Optional[int]:
    """1-based position of ``field`` in the key list, or None."""
    for i, key in enumerate(keys, start=1):
        if key.field == field:
            return i
    return None


def query_deals(
    deals: Iterable[Deal],
    filters: DealFilters,
    keys: Sequence[SortKey] = (),
) -> List[Deal]:
    """Filter then sort: the deals table."""
    return sort_deals(filter_deals(deals, filters), keys)
