#!/usr/bin/env python3
"""
Stock Trend Visualizer - Phase 1: Series Engine
================================================
Turns raw per-day stock records into per-company normalized series and
ranked top-N selections for the line view and the treemap view.

Stages
------
* A. Record normalizer: validates each wire record against ``RawRecord``
  and collects the ones it cannot parse instead of aborting the run.
* B. Series builder: groups by company, orders chronologically and adds
  percent change from the baseline and from the previous day.
* C. Ranker & selector: orders companies by first-observed market cap and
  keeps the top ``window``.

Every stage is a pure function of its input.  Division by a zero price is
clamped to a neutral 0 and counted, never propagated as inf/NaN.
"""

import logging
import warnings
from collections.abc import Mapping, Sequence

import numpy as np
import pandas as pd
from pydantic import ValidationError

from schemas import CompanySeries, RankedSelection, RawRecord, RejectedRecord, SeriesPoint

log = logging.getLogger("stockviz.series_engine")

# Columns of the normalized-entries frame.  ``seq`` is the record's position
# in the raw dataset and pins the order of same-day records.
ENTRY_COLS = ["seq", "name", "date", "close_price", "market_cap"]

SERIES_COLS = ["name", "market_cap", "date", "close_price",
               "pct_change_base", "pct_change_prev"]


class MalformedRecord(ValueError):
    """A single raw record could not be parsed."""

    def __init__(self, index: int, reason: str, record=None):
        super().__init__(f"record {index}: {reason}")
        self.index = index
        self.reason = reason
        self.record = record


class InvalidDatasetError(TypeError):
    """The dataset is not a sequence of objects at all."""


# =========================================================================
# A. Record normalizer
# =========================================================================
def _describe(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e["loc"]) or "record"
        parts.append(f"{loc}: {e['msg']}")
    return "; ".join(parts)


def parse_record(raw, index: int) -> RawRecord:
    """Validate one raw record.  Raises MalformedRecord on the first problem."""
    if not isinstance(raw, Mapping):
        raise MalformedRecord(index, f"expected an object, got {type(raw).__name__}", raw)
    try:
        return RawRecord.model_validate(dict(raw))
    except ValidationError as e:
        raise MalformedRecord(index, _describe(e), raw) from e


def _entries_frame(rows: list) -> pd.DataFrame:
    df = pd.DataFrame(rows, columns=ENTRY_COLS)
    df["seq"] = df["seq"].astype("int64")
    df["name"] = df["name"].astype(object)
    df["date"] = pd.to_datetime(df["date"])
    df["close_price"] = df["close_price"].astype("float64")
    df["market_cap"] = pd.to_numeric(df["market_cap"], errors="coerce").astype("float64")
    return df


def normalize_records(raw) -> tuple[pd.DataFrame, list[RejectedRecord]]:
    """Parse raw records into a typed entries frame.

    Returns ``(entries, rejected)``.  Bad records are collected in
    ``rejected`` and the rest still flow through; an empty dataset yields an
    empty frame.  Only a structurally invalid dataset (not a sequence, or a
    non-empty sequence without a single object) raises InvalidDatasetError.
    """
    if isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, Sequence):
        raise InvalidDatasetError(
            f"Dataset must be a sequence of objects, got {type(raw).__name__}"
        )
    if len(raw) and not any(isinstance(r, Mapping) for r in raw):
        raise InvalidDatasetError("Dataset contains no objects")

    rows = []
    rejected = []
    for i, rec in enumerate(raw):
        try:
            parsed = parse_record(rec, i)
        except MalformedRecord as e:
            rejected.append(RejectedRecord(index=e.index, reason=e.reason, record=e.record))
            continue
        rows.append({
            "seq": i,
            "name": parsed.name,
            "date": parsed.date,
            "close_price": parsed.close_price,
            "market_cap": parsed.market_cap,
        })

    if rejected:
        warnings.warn(
            f"{len(rejected)} of {len(raw)} records rejected "
            f"(first: record {rejected[0].index}: {rejected[0].reason})"
        )
        log.warning("Rejected malformed records", extra={"count": len(rejected)})

    return _entries_frame(rows), rejected


# =========================================================================
# B. Series builder
# =========================================================================
def _pct_changes(closes: np.ndarray) -> tuple[np.ndarray, np.ndarray, int]:
    """Percent of baseline and percent change vs previous close.

    Returns ``(pct_base, pct_prev, n_clamped)``.  Ratios with a zero divisor
    are set to 0.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        # ratio first so the baseline itself is exactly 100
        pct_base = 100.0 * (closes / closes[0])
        pct_prev = np.zeros_like(closes)
        pct_prev[1:] = 100.0 * (closes[1:] / closes[:-1] - 1.0)

    bad_base = ~np.isfinite(pct_base)
    bad_prev = ~np.isfinite(pct_prev)
    n_clamped = int(bad_base.sum() + bad_prev.sum())
    if n_clamped:
        pct_base = np.where(bad_base, 0.0, pct_base)
        pct_prev = np.where(bad_prev, 0.0, pct_prev)
    return pct_base, pct_prev, n_clamped


def _build_company(name: str, grp: pd.DataFrame) -> CompanySeries:
    grp = grp.sort_values("date", kind="stable")

    dupes = grp["date"].duplicated(keep="first")
    n_dupes = int(dupes.sum())
    if n_dupes:
        log.warning(f"{name}: dropped {n_dupes} duplicate-date records",
                    extra={"company": name, "count": n_dupes})
        grp = grp[~dupes]

    closes = grp["close_price"].to_numpy(dtype="float64")
    pct_base, pct_prev, n_clamped = _pct_changes(closes)
    if n_clamped:
        log.warning(f"{name}: {n_clamped} degenerate ratios clamped to 0 (zero close price)",
                    extra={"company": name, "count": n_clamped})

    caps = [None if pd.isna(m) else float(m) for m in grp["market_cap"]]
    points = [
        SeriesPoint(
            date=d.date(),
            close_price=float(c),
            market_cap=m,
            pct_change_base=float(b),
            pct_change_prev=float(p),
        )
        for d, c, m, b, p in zip(grp["date"], closes, caps, pct_base, pct_prev)
    ]
    return CompanySeries(
        name=name,
        market_cap=caps[0],
        values=points,
        degenerate_ratios=n_clamped,
        duplicate_dates=n_dupes,
    )


def build_series(entries: pd.DataFrame) -> dict[str, CompanySeries]:
    """Group normalized entries into one CompanySeries per company.

    The returned dict keeps companies in order of first appearance in the
    dataset; the ranker relies on it to break market-cap ties.
    """
    series = {}
    if entries.empty:
        return series
    for name, grp in entries.groupby("name", sort=False):
        series[name] = _build_company(name, grp)
    return series


def series_frame(companies) -> pd.DataFrame:
    """Flatten CompanySeries into one row per point (for artifacts)."""
    rows = [
        {
            "name": c.name,
            "market_cap": c.market_cap,
            "date": p.date,
            "close_price": p.close_price,
            "pct_change_base": p.pct_change_base,
            "pct_change_prev": p.pct_change_prev,
        }
        for c in companies
        for p in c.values
    ]
    df = pd.DataFrame(rows, columns=SERIES_COLS)
    df["date"] = pd.to_datetime(df["date"])
    df["market_cap"] = pd.to_numeric(df["market_cap"], errors="coerce").astype("float64")
    return df


# =========================================================================
# C. Ranker & selector
# =========================================================================
def rank_companies(series: Mapping[str, CompanySeries], window: int) -> RankedSelection:
    """Top ``window`` companies by market cap, descending.

    Companies without a market cap cannot be compared and are left out
    (reported in ``missing_market_cap``) rather than ranked as zero.  The
    sort is stable, so equal market caps keep encounter order.  Fewer
    qualifying companies than ``window`` returns all of them.
    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")

    qualifying = [s for s in series.values() if s.market_cap is not None]
    missing = [s.name for s in series.values() if s.market_cap is None]
    if missing:
        log.info(f"{len(missing)} companies without market cap excluded from ranking: {missing}",
                 extra={"count": len(missing)})

    # sorted() stays stable with reverse=True
    ranked = sorted(qualifying, key=lambda s: s.market_cap, reverse=True)
    return RankedSelection(window=window, companies=ranked[:window], missing_market_cap=missing)
