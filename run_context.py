#!/usr/bin/env python3
"""
Run Context - Reproducibility infrastructure for the Stock Trend Visualizer.

Provides:
  - run_id generation (UUID4)
  - Config snapshot saving
  - Run metadata recording (timestamps, versions, stage timings, counts)
  - Intermediate data artifact saving (Parquet) and rejected-record dumps
  - Structured JSON logging for the ``stockviz`` logger tree

Usage:
    ctx = RunContext()          # generates run_id, creates runs/{run_id}/
    ctx.save_config(cfg)       # snapshot config
    with ctx.stage("build_series"):
        series = build_series(entries)
    ctx.save_artifact("01_series", df)   # save intermediate DataFrame
    ctx.log.info("message", extra={"company": "SMIC"})
    ctx.save_metadata({...})   # save final run metadata
    ctx.close()
"""

import json
import logging
import platform
import subprocess
import sys
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import yaml

ROOT = Path(__file__).resolve().parent
RUNS_DIR = ROOT / "runs"
LOGGER_NAME = "stockviz"


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        # Merge any extra fields (company, count, stage timing, etc.)
        for key in ("company", "count", "phase", "step", "duration_ms",
                    "status", "run_id", "path"):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


class RunContext:
    """Manages a single pipeline run's metadata, artifacts, and logging."""

    def __init__(self, run_id: str | None = None, runs_dir: Path | None = None):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.start_time = datetime.now()
        self.run_dir = Path(runs_dir or RUNS_DIR) / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.timings: dict[str, float] = {}

        # Pipeline modules log to children of this logger
        self.log = logging.getLogger(LOGGER_NAME)
        self.log.setLevel(logging.DEBUG)
        self.log.propagate = False

        # Remove existing handlers to avoid duplicates on re-init
        self.close()

        # JSON file handler
        log_path = self.run_dir / "run.log"
        fh = logging.FileHandler(str(log_path), encoding="utf-8")
        fh.setFormatter(_JSONFormatter())
        self.log.addHandler(fh)

        # Console handler (human-readable)
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
        ch.setLevel(logging.INFO)
        self.log.addHandler(ch)

        self.log.info("Run started", extra={"run_id": self.run_id})

    @contextmanager
    def stage(self, name: str):
        """Time a pipeline stage and log its outcome.

        Failures are logged with the exception and re-raised.
        """
        t0 = time.monotonic()
        status = "OK"
        try:
            yield
        except Exception as exc:
            status = "FAIL"
            self.log.error(f"Stage {name} failed: {type(exc).__name__}: {exc}",
                           extra={"phase": "stage", "step": name})
            raise
        finally:
            elapsed_ms = round((time.monotonic() - t0) * 1000, 1)
            self.timings[name] = elapsed_ms
            self.log.debug(f"Stage {name} {status} ({elapsed_ms:.0f} ms)",
                           extra={"phase": "stage", "step": name,
                                  "duration_ms": elapsed_ms, "status": status})

    def save_config(self, cfg: dict) -> Path:
        """Save a snapshot of the config used for this run."""
        path = self.run_dir / "config.yaml"
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(cfg, f, default_flow_style=False, sort_keys=False,
                           allow_unicode=True)
        self.log.info("Config snapshot saved", extra={"phase": "init"})
        return path

    def save_artifact(self, name: str, df: pd.DataFrame) -> Path:
        """Save an intermediate DataFrame as Parquet."""
        path = self.run_dir / f"{name}.parquet"
        df.to_parquet(str(path), index=False)
        self.log.info(f"Artifact saved: {name} ({len(df)} rows)",
                      extra={"phase": "artifact", "step": name, "count": len(df)})
        return path

    def save_rejected(self, rejected) -> Path:
        """Dump rejected raw records so data problems can be traced to source."""
        data = {
            "rejected_count": len(rejected),
            "rejected": [r.model_dump() for r in rejected],
        }
        path = self.run_dir / "rejected_records.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        if rejected:
            self.log.warning(f"{len(rejected)} rejected records written to {path.name}",
                             extra={"count": len(rejected), "path": str(path)})
        return path

    def save_metadata(self, extra: dict | None = None) -> Path:
        """Save run metadata (call at end of pipeline)."""
        end_time = datetime.now()
        meta = {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "elapsed_seconds": round((end_time - self.start_time).total_seconds(), 1),
            "stage_ms": dict(self.timings),
            "git_sha": _get_git_sha(),
            "python_version": sys.version,
            "platform": platform.platform(),
            "packages": _get_package_versions(),
        }
        if extra:
            meta.update(extra)
        path = self.run_dir / "meta.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2, ensure_ascii=False, default=str)
        self.log.info("Run metadata saved", extra={"run_id": self.run_id})
        return path

    def close(self):
        """Detach and close this run's log handlers."""
        for h in list(self.log.handlers):
            self.log.removeHandler(h)
            h.close()


def _get_git_sha() -> str:
    """Get the current git commit SHA, or 'unknown' if not in a git repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5,
            cwd=str(ROOT),
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


def _get_package_versions() -> dict:
    """Get versions of key dependencies."""
    import importlib.metadata

    versions = {}
    for pkg in ["numpy", "pandas", "pydantic", "pyyaml", "pyarrow"]:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
