"""Flake detection: replay a trace repeatedly and rank actions by how often they diverge."""

from collections import Counter
from dataclasses import replace
from pathlib import Path
from typing import Optional

import httpx
import structlog

from ..config import SessionOptions
from ..utils.logging import LogContext
from .engine import SessionFactory, replay_trace
from .models import FlakeReport, ReplayMode, ReplayOptions, UnstableAction

logger = structlog.get_logger()

MIN_FLAKE_RUNS = 2


async def detect_flakes(
    trace_path: str,
    runs: int,
    options: Optional[SessionOptions] = None,
    replay_options: Optional[ReplayOptions] = None,
    session_factory: Optional[SessionFactory] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FlakeReport:
    """Replay ``runs`` times; only the first run performs preflight.

    Actions are ranked by the number of runs in which they mismatched,
    most unstable first, ties by index.

    Raises:
        ValueError: fewer than two runs were requested.
        PreflightError: the first run's preflight failed.
    """
    if isinstance(runs, bool) or not isinstance(runs, int) or runs < MIN_FLAKE_RUNS:
        raise ValueError("Flake detection requires at least 2 runs")

    replay_options = replay_options or ReplayOptions()
    mismatch_runs: Counter = Counter()
    action_types: dict[int, str] = {}

    with LogContext(flake_runs=runs):
        for run_index in range(runs):
            run_options = replay_options if run_index == 0 else replace(replay_options, preflight=False)
            report = await replay_trace(
                trace_path,
                options=options,
                replay_options=run_options,
                session_factory=session_factory,
                transport=transport,
            )
            for mismatch in report.mismatches:
                mismatch_runs[mismatch.index] += 1
                action_types.setdefault(mismatch.index, mismatch.action_type)
            logger.debug("Flake run finished", run=run_index + 1, mismatched=report.mismatched)

    unstable = sorted(
        (
            UnstableAction(index=index, action_type=action_types[index], mismatch_runs=count)
            for index, count in mismatch_runs.items()
        ),
        key=lambda action: (-action.mismatch_runs, action.index),
    )
    return FlakeReport(
        trace_path=str(Path(trace_path).resolve()),
        runs=runs,
        mode=ReplayMode(replay_options.mode),
        unstable_actions=tuple(unstable),
    )
