"""
Deals Dashboard — Deal Pydantic Models
========================================

The normalized Deal record, the query parameters the dashboard passes into
the analytics core, and the result shapes it gets back.

Field aliases are the spreadsheet column headers, so a normalized row dict
validates straight into a Deal.
"""
from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ─── Column Schema ──────────────────────────────────────────

# Pipeline stage label -> Deal attribute, in process order.
STAGE_ATTRS: Dict[str, str] = {
    "Enquiry Leads": "enquiry_leads",
    "Opportunity": "opportunity",
    "1. Application": "application",
    "2. Assessment": "assessment",
    "3. Approval": "approval",
    "4. Loan Document": "loan_document",
    "5. Settlement Queue": "settlement_queue",
    "6. Settled": "settled",
}

# Year-specific settlement markers that also count as converted.
SETTLEMENT_MARKER_ATTRS: Dict[str, str] = {
    "2025 Settlement": "settlement_2025",
    "2024 Settlement": "settlement_2024",
}


# ─── Deal ───────────────────────────────────────────────────

class Deal(BaseModel):
    """One sales opportunity, immutable once normalized."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    # Identity
    id: str = Field(alias="deal_id")
    name: str = Field(alias="deal_name")
    broker_name: str = "Unknown Broker"

    # Value (AUD)
    value: float = Field(0.0, alias="deal_value", ge=0)
    status: str = "Unknown"

    # Pipeline stage dates
    enquiry_leads: Optional[str] = Field(None, alias="Enquiry Leads")
    opportunity: Optional[str] = Field(None, alias="Opportunity")
    application: Optional[str] = Field(None, alias="1. Application")
    assessment: Optional[str] = Field(None, alias="2. Assessment")
    approval: Optional[str] = Field(None, alias="3. Approval")
    loan_document: Optional[str] = Field(None, alias="4. Loan Document")
    settlement_queue: Optional[str] = Field(None, alias="5. Settlement Queue")
    settled: Optional[str] = Field(None, alias="6. Settled")
    settlement_2025: Optional[str] = Field(None, alias="2025 Settlement")
    settlement_2024: Optional[str] = Field(None, alias="2024 Settlement")

    # Loss
    lost_date: Optional[str] = Field(None, alias="Lost date")
    lost_reason: Optional[str] = Field(None, alias="lost reason")
    lost_from_process: Optional[str] = Field(None, alias="which process (if lost)")

    # Convenience
    process_days: Optional[float] = Field(None, alias="process days")
    latest_date: Optional[str] = None
    created_time: Optional[str] = None
    new_lead: Optional[str] = Field(None, alias="new_lead?")

    # Lead source flags
    from_rednote: bool = Field(False, alias="From Rednote?")
    from_lifex: bool = Field(False, alias="From LifeX?")

    def stage_date(self, stage: str) -> Optional[str]:
        """Raw date string recorded for a pipeline stage label."""
        attr = STAGE_ATTRS.get(stage) or SETTLEMENT_MARKER_ATTRS.get(stage)
        return getattr(self, attr) if attr else None


# ─── Query Parameters ───────────────────────────────────────

SortDirection = Literal["asc", "desc"]


class SortKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    direction: SortDirection = "asc"


class DateWindow(BaseModel):
    """Inclusive calendar-day window; empty bounds are open."""
    model_config = ConfigDict(frozen=True)

    start: Optional[str] = Field(None, description="YYYY-MM-DD")
    end: Optional[str] = Field(None, description="YYYY-MM-DD")

    @property
    def is_open(self) -> bool:
        return not self.start and not self.end


class DealFilters(BaseModel):
    """Conjunction of dashboard filter selectors. "all" bypasses a selector."""
    model_config = ConfigDict(frozen=True)

    search: str = ""
    status: str = "all"
    broker: str = "all"
    source: str = Field("all", description="all | rednote | lifex | referral")
    window: DateWindow = Field(default_factory=DateWindow)


# ─── Aggregation Results ────────────────────────────────────

class KPISummary(BaseModel):
    total_deals: int = 0
    settled_count: int = 0
    lost_count: int = 0
    converted_count: int = 0
    settled_rate: float = 0.0
    conversion_rate: float = 0.0
    total_value: float = 0.0
    settled_value: float = 0.0


class SourceBreakdown(BaseModel):
    """Metric set for one lead-source class (optionally within one broker)."""
    source: str
    total: int = 0
    converted: int = 0
    conversion_rate: str = "0"
    lost: int = 0
    settled: int = 0
    settled_rate: str = "0"
    value: float = 0.0
    in_progress: int = 0
    in_progress_converted: int = 0


class BrokerBreakdown(BaseModel):
    name: str
    total: int = 0
    settled: int = 0
    value: float = 0.0
    converted: int = 0
    lost: int = 0
    in_progress: int = 0
    in_progress_converted: int = 0
    conversion_rate: str = "0"
    settled_rate: str = "0"
    source_breakdown: List[SourceBreakdown] = Field(default_factory=list)


class LeadSourceStat(BaseModel):
    label: str
    value: int
    converted_count: int = 0
    settled_count: int = 0
    conversion_rate: str = "0"
    settle_rate: str = "0"


class DistributionItem(BaseModel):
    label: str
    value: float


class WeeklyStat(BaseModel):
    week: str
    total_deals: int = 0
    settled_value: float = 0.0
    settled_rate: float = 0.0
    conversion_rate: float = 0.0
    # Percentage deltas; +inf when the previous week had no baseline.
    total_deals_change: Optional[float] = None
    settled_value_change: Optional[float] = None
    # Point deltas for rate metrics.
    settled_rate_change: Optional[float] = None
    conversion_rate_change: Optional[float] = None


class WeeklyAverage(BaseModel):
    weeks: int = 0
    total_deals: float = 0.0
    settled_value: float = 0.0
    settled_rate: float = 0.0
    conversion_rate: float = 0.0


class NewDealsSummary(BaseModel):
    total_new_deals: int = 0
    total_new_value: float = 0.0
    non_zero_deals_count: int = 0


class StatusPartition(BaseModel):
    """Mutually exclusive buckets over a windowed deal set."""
    conversion: int = 0
    settled: int = 0
    lost: int = 0
    no_status: int = 0

    @property
    def total(self) -> int:
        return self.conversion + self.settled + self.lost + self.no_status


class DoubleRing(BaseModel):
    """Top brokers: window deal counts (outer) vs all-time weekly average (inner)."""
    outer: List[DistributionItem] = Field(default_factory=list)
    inner: List[DistributionItem] = Field(default_factory=list)


class NewDealsReport(BaseModel):
    summary: NewDealsSummary = Field(default_factory=NewDealsSummary)
    partition: StatusPartition = Field(default_factory=StatusPartition)
    conversion: List[DistributionItem] = Field(default_factory=list)
    value_partition: StatusPartition = Field(default_factory=StatusPartition)
    value_status: List[DistributionItem] = Field(default_factory=list)
    broker_distribution: List[DistributionItem] = Field(default_factory=list)
    source_distribution: List[DistributionItem] = Field(default_factory=list)
    source_by_broker: Dict[str, List[DistributionItem]] = Field(default_factory=dict)
    broker_by_source: Dict[str, List[DistributionItem]] = Field(default_factory=dict)
    status_distribution: List[DistributionItem] = Field(default_factory=list)


# ─── Pipeline Flow ──────────────────────────────────────────

class FlowNode(BaseModel):
    id: str
    name: str
    type: Literal["stage", "lost"] = "stage"
    count: int = 0


class FlowEdge(BaseModel):
    source: str
    target: str
    value: int = 0


class FlowGraph(BaseModel):
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)
    lost_reason_counts: Dict[str, int] = Field(default_factory=dict)

    def node(self, node_id: str) -> Optional[FlowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def edge_value(self, source: str, target: str) -> int:
        return next(
            (e.value for e in self.edges if e.source == source and e.target == target),
            0,
        )


class NodePosition(BaseModel):
    x: float
    y: float
    height: float


# ─── Treemap ────────────────────────────────────────────────

class TreemapNode(BaseModel):
    id: str
    name: str
    value: float = 0.0
    depth: int = 0
    deal_id: Optional[str] = None
    children: List["TreemapNode"] = Field(default_factory=list)
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height

    def leaves(self) -> List["TreemapNode"]:
        if not self.children:
            return [self]
        out: List[TreemapNode] = []
        for child in self.children:
            out.extend(child.leaves())
        return out


# ─── Annotations ────────────────────────────────────────────

class ChartComment(BaseModel):
    id: str
    content: str
    updated_at: str
