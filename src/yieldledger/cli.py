"""Command-line interface for the yieldledger runtime."""

from __future__ import annotations

import argparse
import sys

from yieldledger.config import Settings
from yieldledger.errors import SettingsError
from yieldledger.runtime import run, show_portfolio


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(description="Multi-asset custodial yield ledger")
    parser.add_argument("--scenario", type=str, help="JSON scenario of ledger operations to run")
    parser.add_argument("--config", type=str, help="TOML settings file")
    parser.add_argument("--controller", type=str, help="Administrative caller identity")
    parser.add_argument("--state-db", type=str, help="SQLite state database path")
    parser.add_argument("--events-dir", type=str, help="Run outputs directory")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Console log level",
    )
    parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Do not write the final ledger snapshot to the state database",
    )
    parser.add_argument(
        "--portfolio",
        action="store_true",
        help="List stored pools and share balances, then exit",
    )
    return parser


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply CLI values onto file- and environment-derived settings."""
    overrides: dict[str, object] = {}
    if args.controller:
        overrides["controller"] = args.controller
    if args.state_db:
        overrides["state_db_path"] = args.state_db
    if args.events_dir:
        overrides["events_dir"] = args.events_dir
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.no_persist:
        overrides["persist_state"] = False

    merged = settings.with_overrides(**overrides)
    if args.portfolio and args.scenario:
        raise SettingsError("Use only one action: --scenario or --portfolio")
    if not args.portfolio and not args.scenario:
        raise SettingsError("Nothing to do: pass --scenario PATH or --portfolio")
    if args.portfolio and not merged.persist_state:
        raise SettingsError("--portfolio cannot be combined with --no-persist")
    return merged


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = apply_cli_overrides(Settings.load(args.config), args)
        if args.portfolio:
            return show_portfolio(settings)
        return run(settings, args.scenario)
    except SettingsError as exc:
        print(f"Configuration error: {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
