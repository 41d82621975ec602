"""Unassign CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path


# ── Default template for `unassign init` ─────────────────────────────────────

_DEFAULT_CONFIG = """\
# Unassign configuration
# Keys can also be set through the environment:
# DAYS_UNTIL_NO_RESPONSE, DAYS_UNTIL_UNASSIGN, PERFORM, CHECKING_INTERVAL, DISABLE_DELAY

sweep:
  # Days of inactivity before an assigned issue is flagged (required)
  days-until-no-response: 7
  # Days of further inactivity before a flagged issue is unassigned
  # (remove to leave flagged issues assigned)
  days-until-unassign: 14
  # false = dry-run, only log what would happen
  perform: false
  label:
    name: "issue assignee: no-response"
    color: ffffff
  mark-comment: "Hi @{assignee}, this issue has been marked for no response."

schedule:
  # Minutes between sweeps of each repository
  checking-interval: 60
  disable-delay: false
  # Leave empty to sweep every repository of the installation
  repositories: []

app:
  bot-username: "unassign[bot]"
  webhook-rate-limit: 60
"""


def _init_config(config_dir: Path) -> None:
    """Write a default config.yaml."""
    config_path = config_dir / "config.yaml"
    if config_path.exists():
        print(f"Error: {config_path} already exists", file=sys.stderr)
        sys.exit(1)

    config_dir.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_DEFAULT_CONFIG)
    print(f"Wrote {config_path}")
    print()
    print("Next steps:")
    print(f"  1. Review {config_path}")
    print(
        "  2. Set environment variables (GITHUB_APP_ID, GITHUB_PRIVATE_KEY, "
        "GITHUB_INSTALLATION_ID, GITHUB_WEBHOOK_SECRET)"
    )
    print(f"  3. Try a dry run: unassign sweep OWNER/REPO --config-dir {config_dir}")


async def _sweep_once(config_dir: Path, full_name: str, perform: bool) -> int:
    """Run one sweep of a single repository and print the result."""
    from unassign.config import RepositoryContext, load_config
    from unassign.engine import LifecycleEngine
    from unassign.github_client import GitHubClient

    config = load_config(config_dir)
    if perform:
        config.sweep.perform = True

    github = GitHubClient(
        app_id=os.environ.get("GITHUB_APP_ID"),
        private_key=os.environ.get("GITHUB_PRIVATE_KEY"),
        installation_id=os.environ.get("GITHUB_INSTALLATION_ID"),
    )
    await github.start()
    try:
        ctx = RepositoryContext.for_repository(full_name, config.sweep)
        result = await LifecycleEngine(github).sweep(ctx)
    finally:
        await github.close()

    print(result.model_dump_json(indent=2))
    return 1 if result.failed or result.phase_errors else 0


def main():
    parser = argparse.ArgumentParser(
        prog="unassign",
        description="Unassign — flags and unassigns GitHub issues whose assignee went quiet",
    )

    subparsers = parser.add_subparsers(dest="command")

    def add_common(sub):
        sub.add_argument(
            "--config-dir",
            type=Path,
            default=Path.cwd(),
            help="Directory holding config.yaml (default: current directory)",
        )
        sub.add_argument(
            "--log-level",
            default="INFO",
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging level (default: INFO)",
        )

    # unassign init
    init_parser = subparsers.add_parser("init", help="Write a default config.yaml")
    init_parser.add_argument(
        "--config-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory to write config.yaml into (default: current directory)",
    )

    # unassign serve
    serve_parser = subparsers.add_parser("serve", help="Start the webhook server and scheduler")
    add_common(serve_parser)
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")

    # unassign sweep
    sweep_parser = subparsers.add_parser("sweep", help="Sweep one repository once and exit")
    sweep_parser.add_argument("repository", help="Repository as owner/repo")
    sweep_parser.add_argument(
        "--perform",
        action="store_true",
        help="Execute mutations even if the config says dry-run",
    )
    add_common(sweep_parser)

    args = parser.parse_args()

    if args.command == "init":
        _init_config(args.config_dir)
        return

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "sweep":
        from unassign.config import ConfigurationError

        try:
            sys.exit(asyncio.run(_sweep_once(args.config_dir, args.repository, args.perform)))
        except ConfigurationError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(2)

    # serve
    import uvicorn

    from unassign.server import create_app

    app = create_app(config_dir=args.config_dir)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
