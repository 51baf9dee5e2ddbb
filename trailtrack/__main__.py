#!/usr/bin/env python3
"""
Trailtrack - GPS trail logger with crash-safe route recording

Usage:
    python -m trailtrack [options]

Options:
    --db FILE         SQLite store for saved routes and backups (default: trailtrack.db)
    --memory          Keep everything in memory (nothing survives the run)
    --log FILE        Log file path (default: trailtrack_TIMESTAMP.log)
    --playback FILE   Play back a recorded GPS trace instead of live GPS
    --speed FACTOR    Playback speed multiplier (default: 1.0)
    --record FILE     Record the GPS trace to a JSON file
    --termux          Use live GPS from the Termux API
    --ws-port PORT    Port of the WebSocket bridge (default source)
    --list            List saved routes and exit
    --storage         Show storage usage and exit
    --clear-all       Delete all saved routes and any backup, then exit
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from .app import TrailApp
from .bridge import WebSocketBridge
from .config import CONFIG
from .errors import StorageError, UnsupportedSource
from .geo import format_distance
from .gps import PlaybackSource, RecordingSource, TermuxSource
from .logger import Logger
from .sessions import SessionStore
from .store import MemoryStore, SQLiteStore, storage_usage
from .timer import LoopClock, format_duration


def _list_sessions(sessions: SessionStore):
    saved = sessions.list()
    if not saved:
        print("No saved routes.")
        return
    for s in saved:
        print(f"{s.id}  {s.iso_date}  {s.name!r}  "
              f"{format_distance(s.total_distance_km)}  {format_duration(s.elapsed_ms)}  "
              f"({len(s.data)} points)")


def _show_storage(store):
    info = storage_usage(store)
    print("Storage Usage:")
    print(f"  Total: {info['total_kb']} KB")
    print(f"  Photos: {info['photo_count']} ({info['photo_kb']} KB)")
    print(f"  Usage: {info['usage_percent']}%")
    if info["near_limit"]:
        print("  Storage nearly full!")


async def _run(args, store, clock: LoopClock, logger: Logger):
    bridge = None
    if args.playback:
        source = PlaybackSource(args.playback, clock, args.speed)
        logger.log("Loaded GPS trace", {"path": args.playback, "entries": len(source.trace)})
    elif args.termux:
        source = TermuxSource(clock)
    else:
        bridge = WebSocketBridge(clock, port=args.ws_port, logger=logger)
        await bridge.start()
        logger.callback = bridge.send_log
        source = bridge

    if args.record:
        source = RecordingSource(source, args.record, clock)

    app = TrailApp(store, source, clock, renderer=bridge, logger=logger)
    if bridge is not None:
        bridge.on_command = app.handle_command
    try:
        await app.run()
    finally:
        if bridge is not None:
            await bridge.close()


def main():
    parser = argparse.ArgumentParser(
        description="Trailtrack - GPS trail logger with crash-safe route recording"
    )
    parser.add_argument("--db", metavar="FILE", default=CONFIG["db_path"],
                        help=f"SQLite store (default: {CONFIG['db_path']})")
    parser.add_argument("--memory", action="store_true",
                        help="Use an in-memory store")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: trailtrack_TIMESTAMP.log)")
    parser.add_argument("--playback", metavar="FILE",
                        help="Play back GPS trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback speed multiplier (default: 1.0)")
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--termux", action="store_true",
                        help="Use live GPS via termux-location")
    parser.add_argument("--ws-port", type=int, default=CONFIG["ws_port"],
                        help=f"WebSocket bridge port (default: {CONFIG['ws_port']})")
    parser.add_argument("--list", action="store_true",
                        help="List saved routes and exit")
    parser.add_argument("--storage", action="store_true",
                        help="Show storage usage and exit")
    parser.add_argument("--clear-all", action="store_true",
                        help="Delete all saved routes and any backup, then exit")

    args = parser.parse_args()

    if args.playback and args.termux:
        parser.error("--playback and --termux cannot be used together")
    if args.playback and not Path(args.playback).exists():
        print(f"Playback file not found: {args.playback}")
        sys.exit(1)

    try:
        store = MemoryStore() if args.memory else SQLiteStore(args.db)
    except StorageError as e:
        print(f"Cannot open store: {e}")
        sys.exit(1)

    clock = LoopClock()

    # Early exits
    if args.list or args.storage or args.clear_all:
        sessions = SessionStore(store, clock, Logger(echo=False))
        if args.clear_all:
            count = len(sessions.list())
            sessions.clear_all(include_backup=True)
            print(f"Cleared {count} saved routes and any unsaved backup.")
        if args.list:
            _list_sessions(sessions)
        if args.storage:
            _show_storage(store)
        return

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"trailtrack_{timestamp}.log"
    logger = Logger(log_path)

    try:
        asyncio.run(_run(args, store, clock, logger))
    except UnsupportedSource as e:
        print(f"Cannot start tracking: {e}")
        sys.exit(1)
    finally:
        if isinstance(store, SQLiteStore):
            store.close()


if __name__ == "__main__":
    main()
