"""Entry point: ``python -m tqqq_phase.run [command]``

Commands:
    serve            (default) background cycles on the smart interval
    once             run a single cycle and exit
    sync             full reload + sentiment, then publish the snapshot
    export PATH      write the snapshot document (``--csv`` for the row table)
    import PATH      validate and restore a snapshot document

Environment variables (a local ``.env`` is honoured):
    TWELVE_DATA_API_KEY   price API key; without it only ``serve`` works,
                          in read-only mode on TQQQ_PUBLIC_SNAPSHOT
    TQQQ_SYMBOLS          comma-separated basket (default QQQ,TQQQ,…)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from datetime import UTC, datetime

from dotenv import load_dotenv

from ._http import sanitize_exc
from .config import Config, validate_config
from .errors import FetchError, InvalidSnapshot
from .ingest_twelvedata import TwelveDataAdapter
from .log_redaction import apply_global_log_redaction
from .poller import BackgroundPoller
from .scheduler import CycleController
from .sentiment import SentimentResolver
from .snapshot import ACTIONS_SYNC_VERSION, export_signal_csv
from .store_sqlite import SqliteStore

logger = logging.getLogger(__name__)


def build_controller(cfg: Config) -> CycleController:
    """Wire adapters, resolver and persistence for *cfg*."""
    os.makedirs(os.path.dirname(cfg.sqlite_path) or ".", exist_ok=True)
    repository = SqliteStore(cfg.sqlite_path, cfg.storage_key)
    prices = None if cfg.read_only else TwelveDataAdapter.from_config(cfg)
    resolver = SentimentResolver(timeout_s=cfg.sentiment_timeout_s)
    return CycleController(cfg, prices, resolver, repository)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tqqq-phase", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="run cycles in the background until Ctrl-C")
    sub.add_parser("once", help="run a single cycle")
    sync = sub.add_parser("sync", help="full reload, then publish the snapshot")
    sync.add_argument("--output", default=None, help="snapshot path (default: TQQQ_EXPORT_PATH)")
    exp = sub.add_parser("export", help="write the snapshot document")
    exp.add_argument("path")
    exp.add_argument("--csv", default=None, help="also write the signal rows as CSV")
    imp = sub.add_parser("import", help="restore a snapshot document")
    imp.add_argument("path")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def _serve(controller: CycleController) -> int:
    poller = BackgroundPoller(controller)
    poller.start()
    try:
        while poller.is_alive:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Stopping…")
    finally:
        poller.stop(timeout=5.0)
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv(override=False)
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cfg = Config()
    apply_global_log_redaction(secrets=[cfg.api_key])
    problems = validate_config(cfg)
    if problems:
        for p in problems:
            logger.error("Invalid configuration: %s", p)
        return 1

    command = args.command or "serve"
    if cfg.read_only and command in ("once", "sync"):
        logger.error("%s needs TWELVE_DATA_API_KEY", command)
        return 1

    logger.info("Basket: %s (anchor %s), smart interval %ds%s",
                ",".join(cfg.symbols), cfg.anchor_symbol, cfg.smart_interval_s,
                " [read-only]" if cfg.read_only else "")
    controller = build_controller(cfg)
    if controller.start():
        saved_at = controller.repository.last_saved_at()
        if saved_at is not None:
            logger.info("Local state last saved %s",
                        datetime.fromtimestamp(saved_at, tz=UTC).isoformat(timespec="seconds"))

    if command == "serve":
        return _serve(controller)
    if command == "once":
        result = controller.run_cycle()
        logger.info("%s: %s", result.mode, result.status)
        return 0
    if command == "sync":
        result = controller.full_load(refresh_sentiment=True)
        if not controller.rows:
            logger.error("Sync produced no rows: %s", result.status)
            return 1
        controller.export(args.output or cfg.export_path, version=ACTIONS_SYNC_VERSION)
        return 0
    if command == "export":
        controller.export(args.path)
        if args.csv:
            export_signal_csv(args.csv, controller.rows, cfg)
        return 0
    if command == "import":
        try:
            result = controller.import_snapshot(args.path)
        except (InvalidSnapshot, FetchError) as exc:
            logger.error("Import rejected: %s", sanitize_exc(exc))
            return 1
        logger.info("%s", result.status)
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
