"""Dated output directories for analysis phases.

    with RunContext("k3_n1200", "em_diagnostics", params=vars(args), primer=PRIMER) as ctx:
        runs.write_parquet(ctx.data_dir / "runs.parquet")
        save_fig(fig, ctx.plots_dir / "likelihood.png")

Layout: results/<experiment>/<analysis>/<YYYY-MM-DD>/{plots,data,run_log.txt,run_info.json}.
Everything printed inside the block is also written to run_log.txt. A run
that exits cleanly becomes the target of results/<experiment>/<analysis>/latest.
"""

from __future__ import annotations

import io
import json
import re
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType


class _LogTee(io.TextIOBase):
    """stdout replacement that keeps a copy of everything written."""

    def __init__(self, console) -> None:
        self.console = console
        self.captured = io.StringIO()

    def write(self, text: str) -> int:
        self.console.write(text)
        self.captured.write(text)
        return len(text)

    def flush(self) -> None:
        self.console.flush()


def _normalize_experiment(experiment: str) -> str:
    """Directory-safe experiment slug: "K=3, N=1200" -> "k3_n1200"."""
    slug = re.sub(r"[^a-z0-9]+", "_", experiment.lower().replace("=", ""))
    return slug.strip("_") or "default"


def _git_commit() -> str:
    try:
        out = subprocess.run(
            ["git", "rev-parse", "HEAD"], capture_output=True, text=True, timeout=5
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return "unknown"
    return out.stdout.strip() if out.returncode == 0 else "unknown"


class RunContext:
    """One dated run of an analysis phase for one experiment."""

    def __init__(
        self,
        experiment: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
    ) -> None:
        self.experiment = _normalize_experiment(experiment)
        self.analysis_name = analysis_name
        self.params = params or {}
        self.primer = primer
        self.run_date = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        self.analysis_dir = (results_root or Path("results")) / self.experiment / analysis_name
        self.run_dir = self.analysis_dir / self.run_date
        self.plots_dir = self.run_dir / "plots"
        self.data_dir = self.run_dir / "data"

        self._tee: _LogTee | None = None
        self._started: datetime | None = None

    def __enter__(self) -> RunContext:
        for d in (self.plots_dir, self.data_dir):
            d.mkdir(parents=True, exist_ok=True)
        if self.primer:
            (self.analysis_dir / "README.md").write_text(self.primer, encoding="utf-8")

        self._started = datetime.now(timezone.utc)
        self._tee = _LogTee(sys.stdout)
        sys.stdout = self._tee
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        sys.stdout = self._tee.console
        (self.run_dir / "run_log.txt").write_text(self._tee.captured.getvalue(), encoding="utf-8")
        self._write_run_info(exc_val)
        if exc_type is None:
            self._point_latest()

    def _write_run_info(self, error: BaseException | None) -> None:
        info = {
            "analysis": self.analysis_name,
            "experiment": self.experiment,
            "run_date": self.run_date,
            "started": self._started.isoformat(),
            "finished": datetime.now(timezone.utc).isoformat(),
            "status": "ok" if error is None else "failed",
            "error": None if error is None else f"{type(error).__name__}: {error}",
            "git_commit": _git_commit(),
            "params": self.params,
        }
        with open(self.run_dir / "run_info.json", "w") as f:
            json.dump(info, f, indent=2, default=str)

    def _point_latest(self) -> None:
        latest = self.analysis_dir / "latest"
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        latest.symlink_to(self.run_date)
