#!/usr/bin/env python3
"""
Interactive HTML Dashboard Generator for the Stock Trend Visualizer.
====================================================================
Turns a PipelineResult into Chart.js chart descriptions (a line chart of
percent-of-baseline per company and a market-cap treemap) and wraps them in
a single self-contained HTML page.

The chart builders are pure: each call returns a fresh description built
only from the (immutable) pipeline output and the chart options.

Usage:
    python generate_dashboard.py --sector oil
    python generate_dashboard.py --data my.json --output out.html
"""

import argparse
import html
import json
import math
from datetime import datetime
from pathlib import Path

import numpy as np

from schemas import (
    ColorDomain,
    LineChartOptions,
    PipelineResult,
    RankedSelection,
    RunConfig,
    TreemapHierarchy,
    TreemapOptions,
)

# d3.schemeTableau10
TABLEAU10 = [
    "#4e79a7", "#f28e2c", "#e15759", "#76b7b2", "#59a14f",
    "#edc949", "#af7aa1", "#ff9da7", "#9c755f", "#bab0ab",
]

# ColorBrewer RdYlGn, red = fell, green = rose
RDYLGN_STOPS = ["#a50026", "#f46d43", "#ffffbf", "#66bd63", "#006837"]

NO_COLOR = "#cccccc"


# ---------------------------------------------------------------------------
# Color helpers
# ---------------------------------------------------------------------------

def _hex_to_rgb(color: str) -> tuple[int, int, int]:
    c = color.lstrip("#")
    if len(c) == 3:
        c = "".join(ch * 2 for ch in c)
    return int(c[0:2], 16), int(c[2:4], 16), int(c[4:6], 16)


def _rgb_to_hex(rgb) -> str:
    return "#" + "".join(f"{int(round(v)):02x}" for v in rgb)


_STOP_RGB = np.array([_hex_to_rgb(c) for c in RDYLGN_STOPS], dtype=float)
_STOP_POS = np.linspace(0.0, 1.0, len(RDYLGN_STOPS))


def _diverging_t(value: float, domain: ColorDomain) -> float:
    """Map value to [0, 1] with domain.mid at 0.5 (d3.scaleDiverging)."""
    if value <= domain.mid:
        span = domain.mid - domain.low
        t = 0.5 if span == 0 else 0.5 * (value - domain.low) / span
    else:
        span = domain.high - domain.mid
        t = 0.5 if span == 0 else 0.5 + 0.5 * (value - domain.mid) / span
    return min(1.0, max(0.0, t))


def diverging_color(value: float, domain: ColorDomain) -> str:
    """RdYlGn fill for a change value; grey for missing/non-finite values."""
    if value is None or not math.isfinite(value):
        return NO_COLOR
    t = _diverging_t(value, domain)
    rgb = [np.interp(t, _STOP_POS, _STOP_RGB[:, i]) for i in range(3)]
    return _rgb_to_hex(rgb)


def text_color(fill: str) -> str:
    """Black on light fills, white on dark ones (perceived brightness)."""
    r, g, b = _hex_to_rgb(fill)
    brightness = r * 0.299 + g * 0.587 + b * 0.114
    return "#000000" if brightness > 150 else "#ffffff"


# ---------------------------------------------------------------------------
# Chart descriptions
# ---------------------------------------------------------------------------

def _y_domain(values: list[float]) -> tuple[int, int]:
    """Percent axis snapped outward to even numbers."""
    lo = math.floor(min(values) / 2) * 2
    hi = math.ceil(max(values) / 2) * 2
    if lo == hi:
        hi += 2
    return lo, hi


def build_line_chart(selection: RankedSelection, opts: LineChartOptions) -> dict:
    """Chart.js line chart: one dataset per company, y = percent of baseline.

    Each point also carries ``prev`` (percent change vs previous day) for
    the tooltip.  Returns ``{}`` when there is nothing to draw.
    """
    if not selection.companies:
        return {}

    datasets = []
    all_pct = []
    all_dates = set()
    for i, company in enumerate(selection.companies):
        color = TABLEAU10[i % len(TABLEAU10)]
        points = []
        for p in company.values:
            points.append({
                "x": p.date.isoformat(),
                "y": round(p.pct_change_base, 4),
                "prev": round(p.pct_change_prev, 4),
            })
            all_pct.append(p.pct_change_base)
            all_dates.add(p.date)
        datasets.append({
            "label": company.name,
            "data": points,
            "borderColor": color,
            "backgroundColor": color,
            "borderWidth": 2,
            "pointRadius": 2,
            "fill": False,
            "tension": 0,
        })

    y_min, y_max = _y_domain(all_pct)
    labels = [d.isoformat() for d in sorted(all_dates)]
    if opts.x_scale == "time":
        x_axis = {"type": "time", "time": {"unit": "day", "tooltipFormat": "yyyy-MM-dd"}}
    else:
        x_axis = {"type": "category", "labels": labels}

    return {
        "type": "line",
        "data": {"labels": labels, "datasets": datasets},
        "options": {
            "responsive": False,
            "animation": False,
            "parsing": {"xAxisKey": "x", "yAxisKey": "y"},
            "scales": {
                "x": x_axis,
                "y": {"type": "linear", "min": y_min, "max": y_max,
                      "ticks": {"stepSize": 2}},
            },
            "plugins": {
                "legend": {"position": "right"},
                "tooltip": {"enabled": opts.tooltip, "mode": "nearest", "intersect": False},
            },
        },
        "width": opts.width,
        "height": opts.height,
    }


def build_treemap_chart(hierarchy: TreemapHierarchy, opts: TreemapOptions) -> dict:
    """Chart.js treemap: rectangle area = market cap, fill = window change.

    Colors are resolved here so the page only has to paint them.
    """
    if not hierarchy.nodes:
        return {}

    tree = []
    for leaf in hierarchy.to_tree()["children"]:
        fill = diverging_color(leaf["change"], hierarchy.color_domain)
        tree.append({
            **leaf,
            "change_pct": round(leaf["change"] * 100, 2),
            "market_cap": round(leaf["weight"] / opts.market_cap_divisor, 2),
            "color": fill,
            "text_color": text_color(fill),
        })

    return {
        "type": "treemap",
        "data": {
            "datasets": [{
                "label": "Market cap",
                "tree": tree,
                "key": "weight",
                "spacing": 2,
                "borderWidth": 1,
                "borderColor": "#ffffff",
            }],
        },
        "options": {
            "responsive": False,
            "animation": False,
            "plugins": {"legend": {"display": False}},
        },
        "color_domain": hierarchy.color_domain.as_list(),
        "market_cap_unit": opts.market_cap_unit,
        "width": opts.width,
        "height": opts.height,
    }


def prepare_dashboard_data(result: PipelineResult, cfg: RunConfig, title: str = "") -> str:
    """Convert pipeline output into a JSON string for embedding in HTML."""
    data = {
        "title": title or cfg.output.title,
        "generated": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "summary": result.summary(),
        "line": build_line_chart(result.line_view, cfg.line_chart),
        "treemap": build_treemap_chart(result.treemap, cfg.treemap),
    }
    return json.dumps(data, ensure_ascii=False)


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

def generate_html(data_json: str, title: str = "Stock Market Trends") -> str:
    """Build the complete dashboard HTML string."""
    # keep "</script>" inside the payload from closing the tag
    data_json = data_json.replace("</", "<\\/")
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{html.escape(title)}</title>
    <script src="https://cdn.jsdelivr.net/npm/chart.js@4.5.1"></script>
    <script src="https://cdn.jsdelivr.net/npm/chartjs-adapter-date-fns@3.0.0/dist/chartjs-adapter-date-fns.bundle.min.js"></script>
    <script src="https://cdn.jsdelivr.net/npm/chartjs-chart-treemap@3.1.0"></script>
    <style>
        body {{ font-family: "DM Sans", Arial, sans-serif; margin: 24px; color: #1f2933; }}
        h1 {{ font-size: 24px; margin-bottom: 4px; }}
        .run-info {{ color: #7b8794; font-size: 12px; }}
        .chart-box {{ border: 1px solid #ccc; padding: 10px; margin-top: 20px; }}
        .empty {{ color: #7b8794; font-style: italic; }}
    </style>
</head>
<body>
    <h1 id="title"></h1>
    <div class="run-info" id="run-info"></div>
    <section class="chart-box">
        <h2>Price trend (% of first close)</h2>
        <div id="line-wrap"><canvas id="line-chart"></canvas></div>
    </section>
    <section class="chart-box">
        <h2>Market-cap structure</h2>
        <div id="treemap-wrap"><canvas id="treemap-chart"></canvas></div>
    </section>
<script>
const DATA = {data_json};

document.getElementById("title").textContent = DATA.title;
const s = DATA.summary;
document.getElementById("run-info").textContent =
    `Generated ${{DATA.generated}} | ${{s.companies}} companies, ${{s.records}} records, ${{s.rejected}} rejected`;

function emptyState(wrapId) {{
    document.getElementById(wrapId).innerHTML = '<p class="empty">No data loaded.</p>';
}}

function sizeCanvas(id, cfg) {{
    const el = document.getElementById(id);
    el.width = cfg.width;
    el.height = cfg.height;
    return el;
}}

function drawLine(cfg) {{
    if (!cfg.type) {{ emptyState("line-wrap"); return; }}
    cfg.options.scales.y.ticks.callback = v => `${{Number(v).toFixed(0)}}%`;
    cfg.options.plugins.tooltip.callbacks = {{
        label: ctx => {{
            const p = ctx.raw;
            const sign = p.prev >= 0 ? "+" : "";
            return `${{ctx.dataset.label}}: ${{p.y.toFixed(2)}}% (day ${{sign}}${{p.prev.toFixed(2)}}%)`;
        }}
    }};
    new Chart(sizeCanvas("line-chart", cfg), cfg);
}}

function drawTreemap(cfg) {{
    if (!cfg.type) {{ emptyState("treemap-wrap"); return; }}
    const ds = cfg.data.datasets[0];
    const item = ctx => (ctx.raw && ctx.raw._data) || {{}};
    ds.backgroundColor = ctx => item(ctx).color || "{NO_COLOR}";
    ds.labels = {{
        display: true,
        align: "center",
        position: "middle",
        color: ctx => item(ctx).text_color || "#000000",
        formatter: ctx => [item(ctx).name, `${{item(ctx).change_pct.toFixed(2)}}%`],
    }};
    cfg.options.plugins.tooltip = {{
        callbacks: {{
            title: items => item(items[0]).name,
            label: ctx => [
                `Change: ${{item(ctx).change_pct.toFixed(2)}}%`,
                `Market cap: ${{item(ctx).market_cap.toFixed(2)}} ${{cfg.market_cap_unit}}`,
            ],
        }}
    }};
    new Chart(sizeCanvas("treemap-chart", cfg), cfg);
}}

drawLine(DATA.line);
drawTreemap(DATA.treemap);
</script>
</body>
</html>
"""


def generate_dashboard(result: PipelineResult, cfg: RunConfig,
                       output_path: Path, title: str = "") -> Path:
    """Write the dashboard HTML for a pipeline result.

    Args:
        result: output of run_pipeline.run_pipeline
        cfg: validated RunConfig (chart options, default title)
        output_path: where to write the HTML
        title: page title; defaults to cfg.output.title

    Returns:
        Path to the generated HTML file.
    """
    title = title or cfg.output.title
    data_json = prepare_dashboard_data(result, cfg, title)
    html = generate_html(data_json, title)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(html, encoding="utf-8")
    print(f"Dashboard generated: {output_path} ({output_path.stat().st_size / 1024:.0f} KB)")
    return output_path


def main():
    # Imported here: run_pipeline imports this module for the full run.
    from run_pipeline import CONFIG_PATH, load_config, load_dataset, resolve_dataset_path, run_pipeline

    parser = argparse.ArgumentParser(description="Generate the stock trend dashboard HTML")
    parser.add_argument("--config", type=str, default=str(CONFIG_PATH),
                        help="Path to config.yaml")
    parser.add_argument("--sector", type=str, default=None,
                        help="Configured dataset key (default: config default_sector)")
    parser.add_argument("--data", type=str, default=None,
                        help="Path to a JSON dataset (overrides --sector)")
    parser.add_argument("--output", type=str, default="dashboard.html",
                        help="Output HTML path")
    args = parser.parse_args()

    cfg = load_config(Path(args.config))
    sector = args.sector or cfg.default_sector
    data_path = Path(args.data) if args.data else resolve_dataset_path(cfg, sector)
    result = run_pipeline(load_dataset(data_path), cfg)
    generate_dashboard(result, cfg, Path(args.output))


if __name__ == "__main__":
    main()
