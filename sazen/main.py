"""Main entry point for the browser action engine."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import structlog

from .actions.schema import parse_loop_script, parse_script
from .config import Settings, get_settings
from .errors import ActionStatus, PreflightError, SazenError
from .execution.results import ActionResult
from .replay import ReplayMode, ReplayOptions, detect_flakes, replay_trace
from .session import AgentSession, LoopRunReport, LoopStopReason, build_loop_metrics_report, run_loop
from .trace import build_selector_health_report, format_selector_health_summary, load_saved_trace
from .utils.logging import configure_logging, log_operation

logger = structlog.get_logger()


async def run_script(
    script_path: str,
    trace_path: str,
    settings: Settings,
    headed: Optional[bool] = None,
) -> dict:
    """Run an action script in a new session and save its trace."""
    script = parse_script(json.loads(Path(script_path).read_text(encoding="utf-8")))
    overrides = script.settings_overrides()
    if headed is not None:
        overrides["headed"] = headed

    results = []
    with log_operation("run_script", logger=logger, script=script_path) as op:
        async with AgentSession(settings.session_options(**overrides), settings=settings) as session:
            for action in script.actions:
                result = await session.perform(action)
                results.append(result)
                _print_action_result(result)
            saved_path = await session.save_trace(trace_path)
        failed = sum(1 for result in results if result.status != ActionStatus.OK)
        op["failed"] = failed
    print("\n" + "=" * 50)
    print(f"Actions: {len(results)}  Failed: {failed}")
    print(f"Trace: {saved_path}")
    print("=" * 50 + "\n")

    return {"trace_path": saved_path, "total": len(results), "failed": failed}


def _print_action_result(result: ActionResult) -> None:
    print(f"[{result.status.value}] {result.action.type} {result.duration_ms}ms")
    if result.error_message:
        print(f"    {result.error_message.splitlines()[0]}")


async def run_loop_script(
    script_path: str,
    settings: Settings,
    max_iterations: Optional[int] = None,
    trace_path: Optional[str] = None,
    metrics_path: Optional[str] = None,
    headed: Optional[bool] = None,
) -> LoopRunReport:
    """Run a loop script in a new session, printing each iteration."""
    script = parse_loop_script(json.loads(Path(script_path).read_text(encoding="utf-8")))
    overrides = script.settings_overrides()
    if headed is not None:
        overrides["headed"] = headed

    with log_operation("run_loop", logger=logger, script=script_path) as op:
        async with AgentSession(settings.session_options(**overrides), settings=settings) as session:
            report = await run_loop(session, script, max_iterations=max_iterations)
            if trace_path:
                trace_path = await session.save_trace(trace_path)
        op["stop_reason"] = report.stop_reason.value

    print(f"Loop stop reason: {report.stop_reason.value}")
    print(f"Iterations: {len(report.iterations)}/{report.max_iterations}")
    for iteration in report.iterations:
        print(f"\nIteration {iteration.iteration}")
        _print_action_result(iteration.step_result)
        observed = iteration.observation_snapshot
        if observed is not None:
            print(
                f"observe: url={observed.url} hash={observed.dom_hash} "
                f"nodes={observed.node_count} interactive={observed.interactive_count}"
            )
        for branch in iteration.branch_results:
            details = " | ".join(
                f"{'pass' if predicate.passed else 'fail'}:{predicate.detail}" for predicate in branch.predicates
            )
            marker = "*" if branch.matched else "-"
            print(f"  {marker} branch {branch.label} [{branch.match_mode}] {details or '(no predicates)'}")
        if iteration.selected_branch_label:
            print(
                f"selected: {iteration.selected_branch_label} next={iteration.selected_branch_next} "
                f"actions={len(iteration.selected_branch_action_results)}"
            )
        else:
            print("selected: (none)")
        for result in iteration.selected_branch_action_results:
            _print_action_result(result)

    if trace_path:
        print(f"\nTrace: {trace_path}")
    if metrics_path:
        path = Path(metrics_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(build_loop_metrics_report(report).to_dict(), indent=2), encoding="utf-8")
        print(f"Metrics: {path.resolve()}")

    return report


def _replay_options(args: argparse.Namespace, settings: Settings) -> ReplayOptions:
    return ReplayOptions(
        mode=ReplayMode(args.mode),
        preflight=not args.no_preflight,
        preflight_timeout_ms=settings.preflight_timeout_ms,
        selector_invariants=not args.no_selector_invariants,
    )


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2))


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Auditable, replayable browser actions for automated agents"
    )
    parser.add_argument("--log-level", help="Override SAZEN_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run an action script and save its trace")
    run.add_argument("script", help="JSON script: {settings?, actions: [...]}")
    run.add_argument(
        "--trace", "-t",
        default=".agent-browser/traces/latest.json",
        help="Where to write the trace (default: .agent-browser/traces/latest.json)"
    )
    run.add_argument("--headed", action="store_true", default=None, help="Show the browser window")

    loop = subparsers.add_parser("loop", help="Run a loop script (action, observe, branch)")
    loop.add_argument("script", help="JSON loop script: {settings?, setupActions?, stepAction, branches}")
    loop.add_argument("--max-iterations", type=_positive_int, help="Override the script's iteration limit")
    loop.add_argument("--trace", "-t", help="Also write the session trace here")
    loop.add_argument("--metrics", help="Write loop metrics JSON here")
    loop.add_argument("--headed", action="store_true", default=None, help="Show the browser window")

    def add_replay_arguments(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("trace", help="Saved trace file")
        sub.add_argument("--mode", choices=[mode.value for mode in ReplayMode], default=ReplayMode.STRICT.value)
        sub.add_argument("--no-preflight", action="store_true", help="Skip origin reachability checks")
        sub.add_argument(
            "--no-selector-invariants",
            action="store_true",
            help="Skip selector checks in relaxed mode"
        )
        sub.add_argument("--json", action="store_true", help="Print the report as JSON")

    replay = subparsers.add_parser("replay", help="Replay a trace and compare outcomes")
    add_replay_arguments(replay)

    flakes = subparsers.add_parser("flakes", help="Replay a trace repeatedly to find unstable actions")
    add_replay_arguments(flakes)
    flakes.add_argument("--runs", type=int, default=3, help="Number of replays (default: 3)")

    health = subparsers.add_parser("selector-health", help="Summarize locator health for a trace")
    health.add_argument("trace", help="Saved trace file")
    health.add_argument("--json", action="store_true", help="Print the report as JSON")

    return parser


async def dispatch(args: argparse.Namespace, settings: Settings) -> int:
    """Run the selected command; returns the process exit code."""
    match args.command:
        case "run":
            summary = await run_script(args.script, args.trace, settings, headed=args.headed)
            return 1 if summary["failed"] else 0

        case "loop":
            report = await run_loop_script(
                args.script,
                settings,
                max_iterations=args.max_iterations,
                trace_path=args.trace,
                metrics_path=args.metrics,
                headed=args.headed,
            )
            return 1 if report.stop_reason in (LoopStopReason.STEP_ERROR, LoopStopReason.NO_BRANCH_MATCH) else 0

        case "replay":
            report = await replay_trace(
                args.trace,
                options=settings.session_options(),
                replay_options=_replay_options(args, settings),
            )
            if args.json:
                _print_json(report.to_dict())
            else:
                print(
                    f"Replay ({report.mode.value}): {report.matched}/{report.total_actions} matched, "
                    f"{report.mismatched} mismatched"
                )
                for mismatch in report.mismatches:
                    print(
                        f"- #{mismatch.index} {mismatch.action_type} {mismatch.reason.value}: "
                        f"expected {mismatch.expected}, got {mismatch.actual}"
                    )
            return 1 if report.mismatched else 0

        case "flakes":
            report = await detect_flakes(
                args.trace,
                args.runs,
                options=settings.session_options(),
                replay_options=_replay_options(args, settings),
            )
            if args.json:
                _print_json(report.to_dict())
            else:
                print(f"Flake detection ({report.runs} runs, {report.mode.value})")
                if not report.unstable_actions:
                    print("No unstable actions")
                for action in report.unstable_actions:
                    print(f"- #{action.index} {action.action_type}: mismatched in {action.mismatch_runs}/{report.runs} runs")
            return 1 if report.unstable_actions else 0

        case "selector-health":
            absolute_path, trace = load_saved_trace(args.trace)
            report = build_selector_health_report(trace, trace_path=absolute_path)
            if args.json:
                _print_json(report.to_dict())
            else:
                for line in format_selector_health_summary(report):
                    print(line)
            return 0

    raise ValueError(f"Unknown command '{args.command}'")


def cli(argv: Optional[list[str]] = None) -> int:
    """Command-line interface."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(level=args.log_level or settings.log_level, json_format=settings.log_json)

    try:
        return asyncio.run(dispatch(args, settings))
    except PreflightError as e:
        print(str(e), file=sys.stderr)
        return 2
    except SazenError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        return 2


if __name__ == "__main__":
    sys.exit(cli())
