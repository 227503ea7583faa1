#!/usr/bin/env python3
"""
Stock Trend Visualizer - Phase 2: Treemap Hierarchy
====================================================
Converts a ranked selection of companies into weighted treemap leaves
(weight = market cap, change = close-to-close change across the window)
plus the diverging color domain used to shade them.

Box packing itself is left to the chart library; this module only decides
what goes into the tree.
"""

import logging

import numpy as np
import pandas as pd

from schemas import ColorDomain, CompanySeries, RankedSelection, TreemapHierarchy, WeightedNode

log = logging.getLogger("stockviz.treemap_builder")

NODE_COLS = ["name", "weight", "change"]


def compute_change(series: CompanySeries) -> tuple[float, bool]:
    """Fractional change from first to last close.

    Returns ``(change, degenerate)``.  A zero first close (or any non-finite
    result) gives a neutral 0.0 with ``degenerate=True``.
    """
    first, last = series.first_close, series.last_close
    if first == 0:
        return 0.0, True
    change = (last - first) / first
    if not np.isfinite(change):
        return 0.0, True
    return float(change), False


def color_domain(changes) -> ColorDomain:
    """Data-driven diverging domain anchored at 0.

    ``low``/``high`` are the smallest and largest change, widened to include
    0 so the midpoint always means "unchanged".
    """
    changes = list(changes)
    if not changes:
        return ColorDomain()
    return ColorDomain(low=min(min(changes), 0.0), mid=0.0, high=max(max(changes), 0.0))


def build_hierarchy(selection: RankedSelection) -> TreemapHierarchy:
    """Weighted leaves for the treemap, in ranked order.

    Leaves need a strictly positive weight to get a rectangle; anything else
    is dropped and listed in ``excluded_weight``.
    """
    nodes = []
    excluded = []
    degenerate = 0
    for s in selection.companies:
        weight = s.market_cap
        if weight is None or not weight > 0:
            excluded.append(s.name)
            continue
        change, bad = compute_change(s)
        if bad:
            degenerate += 1
            log.warning(f"{s.name}: window change clamped to 0 (first close {s.first_close})",
                        extra={"company": s.name})
        nodes.append(WeightedNode(name=s.name, weight=weight, change=change))

    if excluded:
        log.info(f"{len(excluded)} companies with non-positive market cap left out of treemap: {excluded}",
                 extra={"count": len(excluded)})

    return TreemapHierarchy(
        nodes=nodes,
        color_domain=color_domain(n.change for n in nodes),
        excluded_weight=excluded,
        degenerate_changes=degenerate,
    )


def hierarchy_frame(hierarchy: TreemapHierarchy) -> pd.DataFrame:
    """Treemap leaves as a DataFrame (for artifacts)."""
    return pd.DataFrame(
        [n.model_dump() for n in hierarchy.nodes], columns=NODE_COLS
    ).astype({"name": object, "weight": "float64", "change": "float64"})
