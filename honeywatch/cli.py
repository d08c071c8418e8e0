# honeywatch/cli.py
import argparse
import json
import logging
import sys
import threading
from typing import List, Optional

from .blocker import FirewallBlocker
from .bus import EventBus
from .config import ConfigError, load_settings
from .models import Notification
from .monitor import MonitorInstance, start_monitors
from .scoring import ThreatScoreStore
from .storage import DB_PATH, SQLiteStorage

logger = logging.getLogger(__name__)


def print_notification(n: Notification) -> None:
    print(f"[{n.honeypot_id}] {n.kind} {json.dumps(n.payload, ensure_ascii=False)}",
          flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="honeywatch",
        description="Watch cowrie honeypot logs and score attacking IPs",
    )
    parser.add_argument("-c", "--config",
                        help="YAML config file (default: $HONEYWATCH_CONFIG)")
    parser.add_argument("--db", help=f"SQLite history file (default: {DB_PATH})")
    parser.add_argument("--no-store", action="store_true",
                        help="Do not keep alert history in SQLite")
    parser.add_argument("--poll-interval", type=float,
                        help="Seconds between log checks")
    parser.add_argument("--from-start", action="store_true",
                        help="Replay existing log content instead of only new lines")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Do not print notifications")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None,
         stop_event: Optional[threading.Event] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    poll_interval = settings.poll_interval
    if args.poll_interval is not None:
        if args.poll_interval <= 0:
            print("Error: --poll-interval must be positive", file=sys.stderr)
            return 2
        poll_interval = args.poll_interval

    bus = EventBus()
    if not args.quiet:
        bus.subscribe(print_notification)

    storage = None
    if not args.no_store:
        storage = SQLiteStorage(args.db or settings.db_path or DB_PATH)
        storage.connect()
        storage.init_db()
        bus.subscribe(storage.record)

    store = ThreatScoreStore()
    monitors: List[MonitorInstance] = start_monitors(
        settings.monitors,
        store,
        bus,
        blocker=FirewallBlocker(),
        poll_interval=poll_interval,
        from_start=args.from_start,
    )
    logger.info("%d of %d honeypot monitor(s) running",
                len(monitors), len(settings.monitors))

    stop_event = stop_event or threading.Event()
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        for m in monitors:
            m.stop()
        bus.close()
        if storage is not None:
            storage.close()
        logger.info("Stopped, %d source IP(s) scored", len(store))

    return 0


if __name__ == "__main__":
    sys.exit(main())
