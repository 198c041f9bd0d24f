from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from mirrorcal.config_manager import ConfigManager
from mirrorcal.errors import ConfigurationError
from mirrorcal.google_calendar import GoogleCalendar
from mirrorcal.models import AppConfig
from mirrorcal.state_store import StateStore
from mirrorcal.sync_engine import SyncEngine, connect_calendar


logger = logging.getLogger("mirrorcal")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="One-way incremental calendar synchronization")
    parser.add_argument("--config", default=os.getenv("MIRRORCAL_CONFIG_PATH", "config.yaml"), help="Config file")
    parser.add_argument("--state", default=os.getenv("MIRRORCAL_STATE_PATH", "data/state.db"), help="State database")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command")

    sync = commands.add_parser("sync", help="Run every configured pair once and exit")
    sync.add_argument("--pair", action="append", dest="pairs", help="Only run the named pair (repeatable)")

    commands.add_parser("serve", help="Start the admin API and the background scheduler")

    calendars = commands.add_parser("calendars", help="Log calendars and event colors of an account")
    calendars.add_argument("account", help="Account name from the config file")
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # Client library internals are noisy at DEBUG.
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def _connect_interactive(config: AppConfig, account_name: str, calendar_id: str) -> GoogleCalendar:
    return connect_calendar(config, account_name, calendar_id, interactive=True)


def run_sync(config_path: str, state_path: str, pairs: list[str] | None) -> int:
    engine = SyncEngine(ConfigManager(config_path), StateStore(state_path), accessor_factory=_connect_interactive)
    result = engine.run_once(trigger="cli", pair_names=pairs)
    logger.info("Sync finished with status %s: %s", result.status, result.message)
    return 0 if result.status in {"success", "skipped"} else 1


def list_account_calendars(config_path: str, account_name: str) -> int:
    config = ConfigManager(config_path).load()
    account = config.accounts.get(account_name)
    if account is None:
        raise ConfigurationError(f"Unknown account: {account_name}")
    calendar = GoogleCalendar.connect(config.google, account, "primary", interactive=True)
    logger.info("List of calendars for %s", account_name)
    for item in calendar.list_calendars():
        logger.info("  - Summary: %s, id: %s", item["summary"], item["id"])
    logger.info("List of event colors for %s", account_name)
    for color_id, color in calendar.list_event_colors().items():
        logger.info("  - ColorId: %s, background: %s, foreground: %s", color_id, color.get("background"), color.get("foreground"))
    return 0


def serve(config_path: str, state_path: str) -> int:
    os.environ["MIRRORCAL_CONFIG_PATH"] = config_path
    os.environ["MIRRORCAL_STATE_PATH"] = state_path
    host = os.getenv("MIRRORCAL_HOST", "0.0.0.0")
    port = int(os.getenv("MIRRORCAL_PORT", "8080"))
    uvicorn.run("mirrorcal.web_admin:create_app", factory=True, host=host, port=port, reload=False)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    if args.command == "serve":
        return serve(args.config, args.state)
    if args.command == "calendars":
        return list_account_calendars(args.config, args.account)
    return run_sync(args.config, args.state, getattr(args, "pairs", None))


if __name__ == "__main__":
    raise SystemExit(main())
