#!/usr/bin/env python3
"""
Typed schemas for the Stock Trend Visualizer.

Provides Pydantic models for data validation at pipeline boundaries.
These schemas are documentation-as-code: they define what the pipeline
expects (wire records, config.yaml) and what each stage produces (series,
ranked selections, treemap hierarchy), making assumptions explicit and
testable.

Every pipeline output model is frozen.  Stages build new objects; nothing
downstream mutates what an earlier stage returned.
"""

import datetime as dt
from typing import Any, Literal, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Calendar days representable as pandas nanosecond timestamps
_FIRST_DAY = (pd.Timestamp.min + pd.Timedelta(days=1)).date()
_LAST_DAY = pd.Timestamp.max.date()


# =========================================================================
# Wire format
# =========================================================================

class RawRecord(BaseModel):
    """One company-day observation as it appears in the JSON dataset.

    ``market_cap`` may be absent or null for some companies; those
    companies cannot be ranked and are dropped by the ranker.
    """
    name: str
    date: dt.date
    close_price: float = Field(ge=0, allow_inf_nan=False)
    market_cap: Optional[float] = Field(None, ge=0, allow_inf_nan=False)

    model_config = ConfigDict(extra="allow", frozen=True)  # datasets carry extra columns (code, sector, ...)

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must be a non-empty string")
        return v

    @field_validator("date", mode="before")
    @classmethod
    def parse_iso_date(cls, v):
        if isinstance(v, dt.datetime):
            return v.date()
        if isinstance(v, dt.date):
            return v
        if not isinstance(v, str):
            raise ValueError(f"date must be an ISO-8601 string, got {type(v).__name__}")
        v = v.strip()
        try:
            return dt.date.fromisoformat(v)
        except ValueError:
            # Accept full timestamps ("2024-01-02T00:00:00Z"), keep the calendar day
            return dt.datetime.fromisoformat(v).date()

    @field_validator("date")
    @classmethod
    def date_in_timestamp_range(cls, v: dt.date) -> dt.date:
        if not _FIRST_DAY <= v <= _LAST_DAY:
            raise ValueError(f"date must be between {_FIRST_DAY} and {_LAST_DAY}")
        return v


class RejectedRecord(BaseModel):
    """A raw record the normalizer refused, kept for data-quality audits."""
    index: int = Field(ge=0)
    reason: str
    record: Any = None

    model_config = ConfigDict(frozen=True)


# =========================================================================
# Pipeline outputs
# =========================================================================

class SeriesPoint(BaseModel):
    date: dt.date
    close_price: float
    market_cap: Optional[float] = None
    pct_change_base: float = Field(allow_inf_nan=False)
    pct_change_prev: float = Field(allow_inf_nan=False)

    model_config = ConfigDict(frozen=True)


class CompanySeries(BaseModel):
    """One company's chronologically ordered, annotated observations.

    ``market_cap`` is the value on the first chronological record and stands
    for the whole window.  ``degenerate_ratios`` counts percentage changes
    that were clamped to 0 because their divisor was zero;
    ``duplicate_dates`` counts same-day records that were dropped.
    """
    name: str
    market_cap: Optional[float] = None
    values: tuple[SeriesPoint, ...] = Field(min_length=1)
    degenerate_ratios: int = 0
    duplicate_dates: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def first_close(self) -> float:
        return self.values[0].close_price

    @property
    def last_close(self) -> float:
        return self.values[-1].close_price


class RankedSelection(BaseModel):
    """Top-``window`` companies by market cap, descending, stable on ties."""
    window: int = Field(ge=1)
    companies: tuple[CompanySeries, ...] = ()
    missing_market_cap: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.companies]


class WeightedNode(BaseModel):
    """Treemap leaf: area proportional to ``weight`` (market cap)."""
    name: str
    weight: float = Field(gt=0, allow_inf_nan=False)
    change: float = Field(allow_inf_nan=False)

    model_config = ConfigDict(frozen=True)


class ColorDomain(BaseModel):
    """``[low, mid, high]`` for a diverging color scale."""
    low: float = 0.0
    mid: float = 0.0
    high: float = 0.0

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def ordered(self) -> "ColorDomain":
        if not self.low <= self.mid <= self.high:
            raise ValueError(
                f"Color domain must satisfy low <= mid <= high "
                f"(got {self.low}, {self.mid}, {self.high})"
            )
        return self

    def as_list(self) -> list[float]:
        return [self.low, self.mid, self.high]


class TreemapHierarchy(BaseModel):
    nodes: tuple[WeightedNode, ...] = ()
    color_domain: ColorDomain = ColorDomain()
    excluded_weight: tuple[str, ...] = ()
    degenerate_changes: int = 0

    model_config = ConfigDict(frozen=True)

    def to_tree(self) -> dict:
        """Single-level tree for a box-packing (treemap) layout."""
        return {
            "name": "root",
            "children": [
                {"name": n.name, "weight": n.weight, "change": n.change}
                for n in self.nodes
            ],
        }


class PipelineResult(BaseModel):
    records: int = 0
    series: tuple[CompanySeries, ...] = ()
    line_view: RankedSelection
    treemap_view: RankedSelection
    treemap: TreemapHierarchy = TreemapHierarchy()
    rejected: tuple[RejectedRecord, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        return not self.series

    def summary(self) -> dict:
        """Diagnostic counts for logging and run metadata."""
        return {
            "records": self.records,
            "rejected": len(self.rejected),
            "companies": len(self.series),
            "missing_market_cap": len(self.treemap_view.missing_market_cap),
            "degenerate_ratios": sum(s.degenerate_ratios for s in self.series),
            "duplicate_dates": sum(s.duplicate_dates for s in self.series),
            "excluded_weight": len(self.treemap.excluded_weight),
            "degenerate_changes": self.treemap.degenerate_changes,
            "line_view": len(self.line_view.companies),
            "treemap_nodes": len(self.treemap.nodes),
        }


# =========================================================================
# Chart options (consumed by generate_dashboard)
# =========================================================================

class LineChartOptions(BaseModel):
    """Behavioural switches for the line view.

    ``x_scale="time"`` spaces points by calendar distance; ``"point"`` spaces
    trading days evenly (weekends and holidays collapse).
    """
    tooltip: bool = True
    x_scale: Literal["time", "point"] = "time"
    width: int = Field(1200, gt=0)
    height: int = Field(400, gt=0)


class TreemapOptions(BaseModel):
    width: int = Field(1200, gt=0)
    height: int = Field(600, gt=0)
    market_cap_divisor: float = Field(1e8, gt=0)
    market_cap_unit: str = "亿"


# =========================================================================
# RunConfig: top-level config schema
# =========================================================================

class RunConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class DatasetConfig(BaseModel):
        path: str
        label: str = ""

    class ViewsConfig(BaseModel):
        line_window: int = Field(5, ge=1)
        treemap_window: int = Field(10, ge=1)

    class OutputConfig(BaseModel):
        runs_dir: str = "runs"
        dashboard_file: str = "dashboard.html"
        title: str = "Stock Market Trends"

    datasets: dict[str, DatasetConfig] = {
        "ai": DatasetConfig(path="data/ai_sector.json", label="Integrated Circuits (AI)"),
        "oil": DatasetConfig(path="data/oil_gas_sector.json", label="Oil & Gas"),
    }
    default_sector: str = "ai"
    views: ViewsConfig = ViewsConfig()
    line_chart: LineChartOptions = LineChartOptions()
    treemap: TreemapOptions = TreemapOptions()
    output: OutputConfig = OutputConfig()

    @model_validator(mode="after")
    def default_sector_configured(self) -> "RunConfig":
        if self.default_sector not in self.datasets:
            raise ValueError(
                f"default_sector '{self.default_sector}' is not one of the "
                f"configured datasets {sorted(self.datasets)}"
            )
        return self
