"""
Deals Dashboard — Marketing Spend Models
==========================================

Ad-spend rows from the marketing export (one row per platform per day) and
the summaries the marketing page shows.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.deal_models import DateWindow


# ─── Spend Record ───────────────────────────────────────────

class MarketingRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    date: str = Field(..., description="YYYY-MM-DD")
    cost: float = Field(..., gt=0)
    platform: str = "Unknown"
    impressions: Optional[float] = None
    clicks: Optional[float] = None
    conversions: Optional[float] = None
    ctr: Optional[float] = None
    cpc: Optional[float] = None
    cpm: Optional[float] = None


class MarketingFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    search: str = ""
    platform: str = "all"
    window: DateWindow = Field(default_factory=DateWindow)


# ─── Summaries ──────────────────────────────────────────────

class MarketingMetrics(BaseModel):
    total_cost: float = 0.0
    total_impressions: float = 0.0
    total_clicks: float = 0.0
    total_conversions: float = 0.0
    avg_ctr: float = 0.0
    avg_cpc: float = 0.0
    avg_cpm: float = 0.0
    campaign_count: int = 0


class DailySpend(BaseModel):
    date: str
    cost: float = 0.0
    impressions: float = 0.0
    clicks: float = 0.0
    conversions: float = 0.0


class PlatformSpend(BaseModel):
    platform: str
    cost: float = 0.0
    campaigns: int = 0
