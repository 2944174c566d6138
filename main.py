#!/usr/bin/env python3
"""
VidFriends media ingestion v1.0.0: command line entry point.

    vidfriends lookup URL
    vidfriends share URL|--file PATH [--owner ID] [--wait]
    vidfriends status SHARE_ID
    vidfriends list [--owner ID] [--pending]
    vidfriends cleanup
    vidfriends diagnostics
"""

import sys
import os
import json
import time
import logging
import argparse
from dataclasses import asdict
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from vidfriends.core.constants import APP_VERSION, LOG_DIR, TERMINAL_ASSET_STATUSES
from vidfriends.core.config import AppConfig
from vidfriends.core.error_codes import MediaError

logger = logging.getLogger("vidfriends")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "info", log_dir: Path = LOG_DIR) -> Path:
    """Log to <log_dir>/app.log and to stderr."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )
    return log_file


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_lookup(service, args) -> int:
    metadata = service.lookup(args.url)
    _print_json(asdict(metadata))
    return 0


def _wait_for_terminal(service, share, timeout_sec: float):
    deadline = time.monotonic() + timeout_sec
    while time.monotonic() < deadline:
        current = service.get_share(share.id)
        if current and current.asset_status in TERMINAL_ASSET_STATUSES:
            return current
        time.sleep(0.5)
    return service.get_share(share.id) or share


def cmd_share(service, args) -> int:
    if args.file:
        return _share_file(service, args)
    if not args.url:
        print("Error: a URL or --file is required", file=sys.stderr)
        return 1

    share = service.share_video(args.owner, args.url)
    if args.wait:
        share = _wait_for_terminal(service, share, args.wait_timeout)
    _print_json(asdict(share))
    return 0


def _share_file(service, args) -> int:
    try:
        results = service.share_file(args.owner, args.file)
    except OSError as e:
        print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
        return 1

    output = []
    for url, outcome in results:
        if isinstance(outcome, MediaError):
            output.append({"url": url, "error": str(outcome)})
            continue
        if args.wait:
            outcome = _wait_for_terminal(service, outcome, args.wait_timeout)
        output.append(asdict(outcome))
    _print_json(output)
    return 2 if any(isinstance(o, MediaError) for _, o in results) else 0


def cmd_status(service, args) -> int:
    share = service.get_share(args.share_id)
    if share is None:
        print(f"Share not found: {args.share_id}", file=sys.stderr)
        return 1
    _print_json(asdict(share))
    return 0


def cmd_list(service, args) -> int:
    if args.pending:
        shares = service.pending_shares()
    else:
        shares = service.list_shares(owner_id=args.owner, limit=args.limit)
    _print_json([asdict(s) for s in shares])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vidfriends", description="VidFriends media ingestion")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("lookup", help="Resolve video metadata")
    p.add_argument("url")
    p.set_defaults(func=cmd_lookup)

    p = sub.add_parser("share", help="Share a video and ingest its media file")
    p.add_argument("url", nargs="?")
    p.add_argument("--file", default=None, help="Text file with one video URL per line")
    p.add_argument("--owner", default="")
    p.add_argument("--wait", action="store_true", help="Wait for the asset to be ready or failed")
    p.add_argument("--wait-timeout", type=float, default=600)
    p.set_defaults(func=cmd_share)

    p = sub.add_parser("status", help="Show a share's asset status")
    p.add_argument("share_id")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("list", help="List recent shares")
    p.add_argument("--owner", default=None)
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--pending", action="store_true", help="Only shares still awaiting their asset")
    p.set_defaults(func=cmd_list)

    sub.add_parser("cleanup", help="Remove stale temporary downloads")
    sub.add_parser("diagnostics", help="Show tool and storage diagnostics")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = AppConfig(args.config)
    log_file = setup_logging(config.log_level)

    logger.info("VidFriends v%s %s at %s (log: %s)",
                APP_VERSION, args.command, datetime.now().isoformat(), log_file)
    logger.debug("Python: %s  PATH: %s", sys.executable, os.environ.get("PATH", ""))

    if args.command == "diagnostics":
        from vidfriends.core.diagnostics import get_diagnostics
        _print_json(get_diagnostics(config))
        return 0

    if args.command == "cleanup":
        from vidfriends.core.cleanup import cleanup_stale_downloads
        removed = cleanup_stale_downloads(config.download_dir, config.stale_download_max_age_sec)
        _print_json([str(p) for p in removed])
        return 0

    from vidfriends.core.share_service import build_services
    service = build_services(config)
    try:
        return args.func(service, args)
    except MediaError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        try:
            service.close()
        except MediaError as e:
            logger.warning("Shutdown incomplete: %s", e)


if __name__ == "__main__":
    sys.exit(main())
