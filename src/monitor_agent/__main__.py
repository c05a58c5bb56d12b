"""CLI entry-point: ``python -m monitor_agent`` / ``monitor-agent``."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from monitor_agent.config import Settings
from monitor_agent.context import AppContext, build_context, build_orchestrator, build_scheduler
from monitor_agent.errors import ConfigurationError
from monitor_agent.schemas import EnhancementStatus


def _load_dotenv() -> None:
    """Load .env from cwd, its parent, or package root so it's found regardless of cwd."""
    # Package root = directory containing pyproject.toml / .env (parent of src/)
    _package_root = Path(__file__).resolve().parent.parent.parent
    for dir_ in (Path.cwd(), Path.cwd().parent, _package_root):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all supported modes."""
    p = argparse.ArgumentParser(
        prog="monitor-agent",
        description="Monitor Agent - turn enhancement requests into reviewed, merged pull requests.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Poll for pending enhancements until interrupted.")
    run_p.add_argument("--dry-run", action="store_true", help="Plan only; never touch the repository")

    once_p = sub.add_parser("once", help="Run a single poll iteration and exit.")
    once_p.add_argument("--dry-run", action="store_true", help="Plan only; never touch the repository")

    sub.add_parser("schedule", help="Merge every deployment that is due, then exit.")
    sub.add_parser("check-config", help="Validate settings and print any problems.")
    sub.add_parser("init-db", help="Create database tables and exit.")
    return p


def _settings_for(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if getattr(args, "dry_run", False):
        settings = replace(settings, dry_run=True)
    return settings


def _require_valid(settings: Settings, *, require_pipeline: bool = True) -> None:
    problems = settings.validate(require_pipeline=require_pipeline)
    if problems:
        raise ConfigurationError(problems)


def _report_problems(problems: list[str]) -> int:
    for problem in problems:
        print(f"  [FAIL] {problem}", file=sys.stderr)
    print("Configuration invalid; fix the settings above and retry.", file=sys.stderr)
    return 1


def _check_config(settings: Settings) -> int:
    problems = settings.validate()
    print("Monitor Agent configuration")
    print(f"  repository : {settings.github_owner}/{settings.github_repo} ({settings.github_base_branch})")
    print(f"  working dir: {settings.git_repo_path}")
    print(f"  database   : {settings.database_url}")
    print(f"  model      : {settings.ai_model}")
    print(f"  dry run    : {settings.dry_run}")
    print(f"  bot review : {settings.enable_bot_review} ({settings.bot_reviewer})")
    if problems:
        return _report_problems(problems)
    print("  [OK] all required settings present")
    return 0


def _run_loop(ctx: AppContext, *, once: bool) -> int:
    orchestrator = build_orchestrator(ctx)
    if once:
        record = orchestrator.poll_once()
        if record is None:
            print("No enhancement processed.")
            return 0
        print(f"Enhancement #{record.id}: {record.status.value}")
        return 1 if record.status is EnhancementStatus.FAILED else 0
    orchestrator.run_forever()
    return 0


def _run_scheduler(ctx: AppContext) -> int:
    summary = build_scheduler(ctx).run()
    print(f"processed={summary.processed} succeeded={summary.succeeded} failed={summary.failed}")
    for result in summary.results:
        print(f"  deployment {result.deployment_id}: {result.status.value} {result.message}")
    return 1 if summary.failed else 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the appropriate mode."""
    _load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    if not args.command:
        parser.print_help()
        return 2

    settings = _settings_for(args)
    if args.command == "check-config":
        return _check_config(settings)

    try:
        if args.command in {"run", "once"}:
            _require_valid(settings)
        elif args.command == "schedule":
            _require_valid(settings, require_pipeline=False)
    except ConfigurationError as exc:
        return _report_problems(exc.problems)

    ctx = build_context(settings)
    try:
        if args.command == "init-db":
            print(f"Database ready: {settings.database_url}")
            return 0
        if args.command == "schedule":
            return _run_scheduler(ctx)
        return _run_loop(ctx, once=args.command == "once")
    finally:
        ctx.close()


if __name__ == "__main__":
    raise SystemExit(main())
