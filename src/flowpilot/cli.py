"""
flowpilot Command-Line Interface

Runs recorded intent specs and manages the solution store.

Usage:
    flowpilot run flows/checkout.json --var EMAIL=me@example.com
    flowpilot run flows/checkout.json --headless --report report.json
    flowpilot solutions export solutions.json --anonymize
    flowpilot solutions import solutions.json --trust high
    flowpilot solutions stats
    flowpilot login --url https://app.example.com --output state.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from flowpilot.core.config import Config
from flowpilot.core.errors import FlowpilotError
from flowpilot.core.types import IntentSpec
from flowpilot.executor import BrowserSession
from flowpilot.session import Session
from flowpilot.solutions import SolutionStore


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def add_cli_status_messages(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add user-friendly CLI status messages for key events."""
    event = event_dict.get("event", "")
    level = event_dict.get("level", "info")

    if level not in ("info", "warning", "error"):
        return event_dict

    status_messages = {
        "step_started": lambda d: f"🔄 Step {d.get('index', '?')}: {d.get('step', '?')} ({d.get('path', '?')})",
        "step_completed": lambda d: (
            f"✅ Step {d.get('index', '?')} completed via {d.get('path', '?')}"
            if d.get("success")
            else f"❌ Step {d.get('index', '?')} failed"
        ),
        "fallback_started": lambda d: f"↪️  Falling back from {d.get('primary', '?')} to {d.get('fallback', '?')}",
        "recovery_started": lambda d: f"🩺 Recovering: {d.get('error', 'Unknown error')}",
        "stored_solution_applied": "💾 Reused a stored solution",
        "alternative_applied": lambda d: f"🧠 Alternative worked: {d.get('approach', '?')}",
        "solution_stored": "💾 Solution saved for future reuse",
        "execution_halted": lambda d: f"⛔ Halted at step {d.get('index', '?')}: {d.get('error', '')}",
        "execution_cancelled": "⚠️  Execution cancelled",
        "reasoning_path_disabled": "⚠️  ANTHROPIC_API_KEY not set - reasoning path disabled",
    }

    if event in status_messages:
        msg = status_messages[event]
        status = msg(event_dict) if callable(msg) else msg
        print(status, flush=True)

    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for CLI output."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            add_cli_status_messages,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def parse_variables(pairs: list[str]) -> dict[str, str]:
    """Parse KEY=VALUE pairs.

    Raises:
        ValueError: If a pair has no '='
    """
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid variable '{pair}', expected KEY=VALUE")
        variables[key.strip()] = value
    return variables


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="flowpilot",
        description="flowpilot - Adaptive browser flow execution with fallback and recovery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  flowpilot run flows/login.json --var EMAIL=me@example.com --var PASSWORD=secret
  flowpilot run flows/checkout.json --headless --report out/report.json
  flowpilot solutions export team_solutions.json --min-success-rate 0.8 --anonymize
  flowpilot solutions import team_solutions.json --trust high
  flowpilot login --url https://app.example.com --output state.json
  flowpilot run flows/dashboard.json --storage-state state.json

Environment Variables:
  ANTHROPIC_API_KEY       Enables the reasoning path and AI recovery
  SOLUTIONS_PERSIST_DIR   Solution store directory (default: ./data/solutions)
  SCREENSHOTS_DIR         Screenshot directory (default: ./data/screenshots)
  CI                      Favors the snippet path when set
        """,
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=LOG_LEVELS,
        default="INFO",
        help="Logging level (default: INFO)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run an intent spec")
    run.add_argument("spec", type=str, help="Path to the intent spec JSON file")
    run.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Run-time variable for {{KEY}} substitution (repeatable)",
    )
    run.add_argument("--headless", action="store_true", help="Run browser in headless mode")
    run.add_argument("--report", type=str, default=None, help="Write the execution report JSON here")
    run.add_argument(
        "--storage-state",
        type=str,
        default=None,
        help="Path to storage state JSON file with a saved login session",
    )
    run.add_argument("--no-recovery", action="store_true", help="Disable the recovery loop")
    run.add_argument(
        "--no-solutions",
        action="store_true",
        help="Do not reuse or record stored solutions",
    )

    solutions = commands.add_parser("solutions", help="Manage the solution store")
    solution_commands = solutions.add_subparsers(dest="solutions_command", required=True)

    export = solution_commands.add_parser("export", help="Export solutions to a snapshot")
    export.add_argument("output", type=str, help="Snapshot file to write")
    export.add_argument("--min-success-rate", type=float, default=0.0)
    export.add_argument("--anonymize", action="store_true")
    export.add_argument("--include-deprecated", action="store_true")

    imp = solution_commands.add_parser("import", help="Import solutions from a snapshot")
    imp.add_argument("input", type=str, help="Snapshot file to read")
    imp.add_argument("--trust", choices=["low", "medium", "high"], default="medium")
    imp.add_argument("--overwrite", action="store_true")

    solution_commands.add_parser("stats", help="Show solution store statistics")

    login = commands.add_parser(
        "login", help="Log in manually and save the browser state for --storage-state"
    )
    login.add_argument("--url", type=str, required=True, help="Login page URL")
    login.add_argument("--output", type=str, required=True, help="Storage state JSON to write")

    return parser


async def run_spec(args: argparse.Namespace) -> bool:
    """Execute an intent spec and print the summary."""
    spec = IntentSpec.load(args.spec)
    variables = parse_variables(args.var)

    config = Config(
        headless=args.headless,
        log_level=args.log_level,
        enable_recovery=not args.no_recovery,
        storage_state=Path(args.storage_state) if args.storage_state else None,
    )

    print("=" * 70)
    print("🤖 flowpilot")
    print("=" * 70)
    print(f"📋 Flow: {spec.name} ({len(spec.steps)} steps)")
    if spec.start_url:
        print(f"🌐 Starting URL: {spec.start_url}")
    print(f"🖥️  Headless: {args.headless}")
    print(f"📸 Screenshots: {config.screenshots_dir}")
    print("=" * 70)
    print()

    session = Session.with_browser(config, use_solution_store=not args.no_solutions)
    async with session:
        report = await session.run(spec, variables)

    if args.report:
        report_path = Path(args.report)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(report.to_json(), encoding="utf-8")

    print()
    print("=" * 70)
    if report.overall_success:
        print("✅ Flow completed successfully!")
    else:
        print("❌ Flow failed")
    print(
        f"📊 Steps: {len(report.steps)}  Reasoning: {report.ai_usage_count}  "
        f"Snippet: {report.snippet_usage_count}  Fallbacks: {report.fallback_count}"
    )
    for suggestion in report.suggestions:
        print(f"💡 {suggestion}")
    if args.report:
        print(f"📝 Report written to {args.report}")
    print("=" * 70)

    return report.overall_success


async def manage_solutions(args: argparse.Namespace) -> bool:
    """Export, import or summarize the solution store."""
    store = SolutionStore(config=Config(log_level=args.log_level))

    if args.solutions_command == "export":
        snapshot = await store.export_snapshot(
            min_success_rate=args.min_success_rate,
            anonymize=args.anonymize,
            include_deprecated=args.include_deprecated,
        )
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
        print(f"💾 Exported {snapshot.metadata.solution_count} solutions to {output}")
        return True

    if args.solutions_command == "import":
        data = Path(args.input).read_text(encoding="utf-8")
        result = await store.import_snapshot(data, overwrite=args.overwrite, trust_level=args.trust)
        print(f"📥 Imported {result.imported}, skipped {result.skipped}")
        for error in result.errors:
            print(f"⚠️  {error}")
        return not result.errors

    stats = await store.statistics()
    print(json.dumps(stats, indent=2))
    return True


async def save_login_state(args: argparse.Namespace) -> bool:
    """Open a visible browser, wait for a manual login and save the session.

    Args:
        args: Parsed arguments with ``url`` and ``output``

    Returns:
        True once the state file is written
    """
    output = Path(args.output)
    if output.exists():
        answer = input(f"⚠️  File {output} already exists. Overwrite? (y/N): ")
        if answer.lower() != "y":
            print("Cancelled.")
            return False

    browser = BrowserSession(Config(headless=False, log_level=args.log_level))
    await browser.start()
    try:
        await browser.navigate(args.url)
        print("=" * 70)
        print("👤 Please log in to the website in the browser")
        print("=" * 70)
        await asyncio.to_thread(
            input, "Press ENTER when you're logged in and ready to save the session..."
        )
        await browser.save_storage_state(output)
    finally:
        await browser.stop()

    print(f"✅ Login session saved to {output}")
    print(f"   flowpilot run <spec> --storage-state {output}")
    print("Note: Keep this file secure - it contains your login credentials!")
    return True


def main() -> int:
    """Main entry point for CLI."""
    parser = create_parser()

    if len(sys.argv) == 1:
        parser.print_help()
        return 1

    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        if args.command == "run":
            success = asyncio.run(run_spec(args))
        elif args.command == "login":
            success = asyncio.run(save_login_state(args))
        else:
            success = asyncio.run(manage_solutions(args))

    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user")
        return 1

    except (FlowpilotError, ValueError, OSError) as e:
        print(f"\n❌ Error occurred: {e}")
        if args.log_level != "DEBUG":
            print("💡 Run with --log-level DEBUG to see full error details")
        else:
            import traceback
            traceback.print_exc()
        return 1

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
