#!/usr/bin/env python3
"""
Stock Trend Visualizer - Full Pipeline Runner
=============================================
Single-command entry point that:
  1. loads config.yaml and the selected sector dataset (static JSON)
  2. normalizes records, builds per-company series, ranks the line (top 5)
     and treemap (top 10) windows, builds the treemap hierarchy
  3. saves run artifacts under runs/<run_id>/ and writes the HTML dashboard

Usage:
    python run_pipeline.py                    # default sector from config
    python run_pipeline.py --sector oil
    python run_pipeline.py --data some.json --output out/dashboard.html
"""

import argparse
import json
import sys
import time
from contextlib import nullcontext
from pathlib import Path

import yaml

from generate_dashboard import generate_dashboard
from run_context import RunContext
from schemas import PipelineResult, RunConfig
from series_engine import build_series, normalize_records, rank_companies, series_frame
from treemap_builder import build_hierarchy, hierarchy_frame

ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"


# =========================================================================
# A. Load configuration and data
# =========================================================================
def load_config(path: Path = CONFIG_PATH) -> RunConfig:
    """Load and validate the YAML configuration file."""
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    return RunConfig(**cfg)


def _resolve(path: str) -> Path:
    p = Path(path)
    return p if p.is_absolute() else ROOT / p


def resolve_dataset_path(cfg: RunConfig, sector: str) -> Path:
    """Map a configured sector key (``ai``, ``oil``, ...) to its JSON file."""
    if sector not in cfg.datasets:
        raise KeyError(
            f"Unknown sector '{sector}'. Configured: {sorted(cfg.datasets)}"
        )
    return _resolve(cfg.datasets[sector].path)


def load_dataset(path: Path) -> list:
    """Read a static JSON dataset (an array of company-day records)."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# =========================================================================
# B. Pipeline
# =========================================================================
def _stage(ctx: RunContext | None, name: str):
    return ctx.stage(name) if ctx is not None else nullcontext()


def run_pipeline(raw, cfg: RunConfig, ctx: RunContext | None = None) -> PipelineResult:
    """Raw records -> line-view selection + treemap hierarchy.

    Pure apart from logging: the same input always gives an equal result.
    An empty dataset gives an empty result rather than an error.
    """
    with _stage(ctx, "normalize"):
        entries, rejected = normalize_records(raw)

    with _stage(ctx, "build_series"):
        series = build_series(entries)

    with _stage(ctx, "rank"):
        line_view = rank_companies(series, cfg.views.line_window)
        treemap_view = rank_companies(series, cfg.views.treemap_window)

    with _stage(ctx, "build_hierarchy"):
        hierarchy = build_hierarchy(treemap_view)

    return PipelineResult(
        records=len(raw),
        series=list(series.values()),
        line_view=line_view,
        treemap_view=treemap_view,
        treemap=hierarchy,
        rejected=rejected,
    )


def print_summary(result: PipelineResult, dashboard: Path, t0: float):
    s = result.summary()
    print(f"\n{'=' * 60}")
    print("  RUN SUMMARY")
    print(f"{'=' * 60}")
    print(f"  Records: {s['records']} ({s['rejected']} rejected)")
    print(f"  Companies: {s['companies']} "
          f"({s['missing_market_cap']} without market cap)")
    print(f"  Line view: {', '.join(result.line_view.names) or '-'}")
    print(f"  Treemap: {s['treemap_nodes']} nodes "
          f"({s['excluded_weight']} excluded for non-positive weight)")
    if s["degenerate_ratios"] or s["degenerate_changes"]:
        print(f"  Clamped ratios: {s['degenerate_ratios']} series points, "
              f"{s['degenerate_changes']} treemap changes")
    if s["duplicate_dates"]:
        print(f"  Duplicate-date records dropped: {s['duplicate_dates']}")
    print(f"  Dashboard: {dashboard}")
    print(f"  Elapsed: {round(time.time() - t0, 1)}s")
    print(f"{'=' * 60}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Build the stock trend line chart and market-cap treemap")
    parser.add_argument("--config", type=str, default=str(CONFIG_PATH),
                        help="Path to config.yaml")
    parser.add_argument("--sector", type=str, default=None,
                        help="Configured dataset key (default: config default_sector)")
    parser.add_argument("--data", type=str, default=None,
                        help="Path to a JSON dataset (overrides --sector)")
    parser.add_argument("--output", type=str, default=None,
                        help="Output HTML path (default: <run-dir>/<dashboard_file>)")
    parser.add_argument("--run-id", type=str, default=None,
                        help="Run id (default: random)")
    parser.add_argument("--runs-dir", type=str, default=None,
                        help="Directory for run artifacts (default: config output.runs_dir)")
    args = parser.parse_args(argv)

    t0 = time.time()

    print("Loading configuration...")
    cfg = load_config(Path(args.config))
    sector = args.sector or cfg.default_sector
    if args.data:
        data_path = Path(args.data)
        title = cfg.output.title
    else:
        data_path = resolve_dataset_path(cfg, sector)
        label = cfg.datasets[sector].label
        title = f"{cfg.output.title}: {label}" if label else cfg.output.title

    runs_dir = Path(args.runs_dir) if args.runs_dir else _resolve(cfg.output.runs_dir)
    ctx = RunContext(run_id=args.run_id, runs_dir=runs_dir)
    try:
        ctx.save_config(cfg.model_dump())

        print(f"Loading dataset {data_path}...")
        with ctx.stage("load_dataset"):
            raw = load_dataset(data_path)

        print("Running pipeline...")
        result = run_pipeline(raw, cfg, ctx)

        with ctx.stage("save_artifacts"):
            ctx.save_artifact("01_series", series_frame(result.series))
            ctx.save_artifact("02_line_view", series_frame(result.line_view.companies))
            ctx.save_artifact("03_treemap_nodes", hierarchy_frame(result.treemap))
            ctx.save_rejected(result.rejected)

        output = Path(args.output) if args.output else ctx.run_dir / cfg.output.dashboard_file
        with ctx.stage("render"):
            generate_dashboard(result, cfg, output, title)

        ctx.save_metadata({
            "sector": None if args.data else sector,
            "dataset": str(data_path),
            "dashboard": str(output),
            "summary": result.summary(),
        })
        print_summary(result, output, t0)
    finally:
        ctx.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
