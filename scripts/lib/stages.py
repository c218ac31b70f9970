"""
Pipeline stage table and per-deal status predicates.

Everything here is a pure function of a single Deal: the display status,
the lead-source class, and the settled / lost / converted flags that the
aggregations count.

Usage:
    from scripts.lib.stages import display_status, lead_source, is_converted
"""
from __future__ import annotations

from typing import List, Optional

from models.deal_models import SETTLEMENT_MARKER_ATTRS, STAGE_ATTRS, Deal
from scripts.lib.utils import is_blank, parse_dt

LOST = "Lost"
UNKNOWN = "Unknown"

PIPELINE_STAGES: List[str] = list(STAGE_ATTRS)
FIRST_STAGE = PIPELINE_STAGES[0]
SETTLED_STAGE = "6. Settled"

# Stages that mean the deal entered active processing.
CONVERSION_STAGES: List[str] = [
    "1. Application",
    "2. Assessment",
    "3. Approval",
    "4. Loan Document",
    "5. Settlement Queue",
]

# Display statuses in table order; anything else sorts after these.
STATUS_ORDER: List[str] = PIPELINE_STAGES + [LOST]

# Free-text "which process (if lost)" values -> stage label.
PROCESS_STAGE_MAP = {
    "Enquiry Leads": "Enquiry Leads",
    "Opportunity": "Opportunity",
    "Application": "1. Application",
    "Assessment": "2. Assessment",
    "Approval": "3. Approval",
    "Loan Document": "4. Loan Document",
    "Settlement Queue": "5. Settlement Queue",
    "Settled": "6. Settled",
}

# Lead-source classes
REDNOTE = "RedNote"
LIFEX = "LifeX"
REFERRAL = "Referral"
LEAD_SOURCES: List[str] = [REDNOTE, LIFEX, REFERRAL]

# Filter selector values -> source class
SOURCE_FILTER_VALUES = {
    "rednote": REDNOTE,
    "lifex": LIFEX,
    "referral": REFERRAL,
}


def stage_reached(deal: Deal, stage: str) -> bool:
    """A stage is reached when its date field is present and non-blank."""
    return not is_blank(deal.stage_date(stage))


def display_status(deal: Deal) -> str:
    """Single display status for a deal.

    "Lost" wins over any reached stage; otherwise the most advanced reached
    stage; otherwise the raw status, or "Unknown".
    """
    if deal.status == LOST:
        return LOST
    latest: Optional[str] = None
    for stage in PIPELINE_STAGES:
        if stage_reached(deal, stage):
            latest = stage
    return latest or deal.status or UNKNOWN


def status_rank(status: str) -> int:
    """Index in STATUS_ORDER; unrecognized statuses rank after all known ones."""
    try:
        return STATUS_ORDER.index(status)
    except ValueError:
        return len(STATUS_ORDER)


def is_settled(deal: Deal) -> bool:
    return stage_reached(deal, SETTLED_STAGE)


def is_lost(deal: Deal) -> bool:
    return deal.status == LOST


def is_converted(deal: Deal) -> bool:
    """Reached any stage beyond the initial enquiry, settlement markers included."""
    if any(stage_reached(deal, s) for s in CONVERSION_STAGES):
        return True
    if is_settled(deal):
        return True
    return any(stage_reached(deal, m) for m in SETTLEMENT_MARKER_ATTRS)


def is_in_progress(deal: Deal) -> bool:
    return not is_lost(deal) and not is_settled(deal)


def in_conversion(deal: Deal) -> bool:
    """In a conversion stage and neither settled nor lost."""
    if is_settled(deal) or is_lost(deal):
        return False
    return any(stage_reached(deal, s) for s in CONVERSION_STAGES)


def lead_source(deal: Deal) -> str:
    """RedNote if flagged, else LifeX if flagged, else Referral."""
    if deal.from_rednote:
        return REDNOTE
    if deal.from_lifex:
        return LIFEX
    return REFERRAL


def reached_stages(deal: Deal) -> List[str]:
    """Stages with a parseable date, in process order (not timestamp order)."""
    return [
        stage for stage in PIPELINE_STAGES
        if parse_dt(deal.stage_date(stage)) is not None
    ]


def lost_from_stage(deal: Deal) -> str:
    """Stage a lost deal dropped out of.

    An explicit process label wins (unmapped labels pass through verbatim),
    then the most advanced dated stage, then the first stage.
    """
    process = (deal.lost_from_process or "").strip()
    if process:
        return PROCESS_STAGE_MAP.get(process, process)
    stages = reached_stages(deal)
    if stages:
        return stages[-1]
    return FIRST_STAGE
