import argparse
import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from coco import __version__
from coco.config import LOG_LEVELS, configure_logging, load_settings
from coco.errors import (
    ConfigError, ReplayCorruptionError, SessionIOError, SessionNotFoundError, WatchError,
)
from coco.models.session import SessionSummary
from coco.session.player import SessionPlayer
from coco.session.recorder import SessionRecorder
from coco.session.store import SessionStore, summarize
from coco.ui.console import ConsoleRenderer

logger = logging.getLogger(__name__)


# ---------- Parser ----------

def build_parser() -> argparse.ArgumentParser:
    # accepted before or after the live subcommand; SUPPRESS keeps a
    # subcommand without -p from clearing the top-level value
    watch_paths = argparse.ArgumentParser(add_help=False)
    watch_paths.add_argument(
        "-p", "--path", action="append", dest="paths", metavar="PATH", default=argparse.SUPPRESS,
        help="file or directory to watch (repeatable, default: current directory)",
    )

    parser = argparse.ArgumentParser(
        prog="coco",
        description="Watch source files and stream AI commentary beside the code.",
    )
    parser.add_argument("--version", action="version", version=f"coco {__version__}")
    parser.add_argument(
        "-p", "--path", action="append", dest="paths", metavar="PATH",
        help="file or directory to watch (repeatable, default: current directory)",
    )
    parser.add_argument("--log-level", choices=sorted(LOG_LEVELS), help="override COCO_LOG_LEVEL")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("watch", parents=[watch_paths], help="live monitoring (the default)")
    sub.add_parser("record", parents=[watch_paths], help="live monitoring with session recording")

    replay = sub.add_parser("replay", help="replay a recorded session")
    replay.add_argument("session_id")
    replay.add_argument("--speed", type=float, default=1.0, help="timing multiplier (default 1.0)")
    replay.add_argument("--instant", action="store_true", help="replay with no delays")
    replay.add_argument("--max-delay-ms", type=int, default=None, help="cap any single delay")

    sub.add_parser("list", help="list recorded sessions")

    show = sub.add_parser("show", help="summarize a recorded session")
    show.add_argument("session_id")

    export = sub.add_parser("export", help="export a session log")
    export.add_argument("session_id")
    export.add_argument("--format", choices=("json", "csv"), default="json")
    export.add_argument("-o", "--output", default=None)

    delete = sub.add_parser("delete", help="delete a recorded session")
    delete.add_argument("session_id")
    return parser


def _fail(message: str, code: int = 1) -> int:
    print(f"coco: {message}", file=sys.stderr)
    return code


def _format_duration(duration_ms: Optional[int]) -> str:
    if duration_ms is None:
        return "-"
    seconds = duration_ms // 1000
    return f"{seconds // 60}m {seconds % 60:02d}s"


# ---------- Live modes ----------

def run_live(args, settings, *, record: bool) -> int:
    from coco.gemini.client import GeminiAnalyzer
    from coco.monitor import Monitor
    from coco.ui.console import KeyReader

    try:
        api_key = settings.require_credential()
    except ConfigError as exc:
        return _fail(str(exc), 2)

    recorder = None
    if record:
        try:
            recorder = SessionRecorder.start(SessionStore(settings.sessions_dir), settings)
        except SessionIOError as exc:
            logger.error("Recording disabled: %s", exc)
            print(f"coco: recording disabled: {exc}", file=sys.stderr)

    backend = GeminiAnalyzer(api_key, settings.model)
    paths = args.paths or ["."]

    async def _run():
        monitor = Monitor(settings, backend, recorder=recorder)
        if sys.stdin.isatty():
            KeyReader(monitor.bus).start()
        return await monitor.run(paths, renderer=ConsoleRenderer())

    try:
        asyncio.run(_run())
    except WatchError as exc:
        if recorder is not None:
            recorder.close()
        return _fail(str(exc))
    except KeyboardInterrupt:
        pass

    if recorder is not None:
        print(f"Session recorded: {recorder.session_id}")
    return 0


# ---------- Session commands ----------

def run_replay(args, settings) -> int:
    store = SessionStore(settings.sessions_dir)
    max_delay = args.max_delay_ms / 1000 if args.max_delay_ms is not None else None
    try:
        player = SessionPlayer.open(
            store, args.session_id, speed=args.speed, instant=args.instant, max_delay=max_delay,
        )
    except ValueError as exc:
        return _fail(str(exc), 2)

    renderer = ConsoleRenderer()
    if not args.instant:
        player.subscribe(lambda event, snapshot: renderer.draw(snapshot))

    try:
        result = asyncio.run(player.play())
    except KeyboardInterrupt:
        return 0

    renderer.draw(result.final)
    if result.diagnostic is not None:
        print(f"coco: {result.diagnostic.message}", file=sys.stderr)
    print(f"Replayed {len(result.snapshots)} events from {result.session_id}")
    return 0


def run_list(args, settings) -> int:
    summaries = SessionStore(settings.sessions_dir).list_sessions()
    if not summaries:
        print("No recorded sessions.")
        return 0

    print(f"{'SESSION':<36} {'STARTED':<20} {'DURATION':>9} {'FILES':>6} {'EVENTS':>7}")
    for s in summaries:
        flag = " (truncated)" if s.truncated else ""
        print(
            f"{s.session_id:<36} {s.started_at:%Y-%m-%d %H:%M:%S} "
            f"{_format_duration(s.duration_ms):>9} {len(s.files):>6} {s.total_events:>7}{flag}"
        )
    return 0


def print_summary(summary: SessionSummary) -> None:
    print(f"Session {summary.session_id}")
    print(f"  Started:   {summary.started_at:%Y-%m-%d %H:%M:%S %Z}")
    if summary.ended_at:
        print(f"  Ended:     {summary.ended_at:%Y-%m-%d %H:%M:%S %Z}")
    print(f"  Duration:  {_format_duration(summary.duration_ms)}")
    print(f"  Events:    {summary.total_events}{' (log truncated)' if summary.truncated else ''}")
    print(f"  Changes:   {summary.file_changes}")
    print(f"  Requests:  {summary.requests}")
    print(f"  Responses: {summary.responses} ({summary.success_rate:.0%} successful, "
          f"avg {summary.average_latency_ms} ms)")
    print(f"  UI:        {summary.ui_actions} actions")
    print(f"  Problems:  {summary.diagnostics} diagnostics")
    print(f"  Files:     {len(summary.files)}")
    shown = summary.files if len(summary.files) <= 10 else summary.files[:5]
    for path in shown:
        print(f"    {path}")
    if len(shown) < len(summary.files):
        print(f"    ... and {len(summary.files) - len(shown)} more files")


def run_show(args, settings) -> int:
    loaded = SessionStore(settings.sessions_dir).load(args.session_id)
    print_summary(summarize(loaded))
    return 0


def run_export(args, settings) -> int:
    output = args.output or f"{args.session_id}.{args.format}"
    count = SessionStore(settings.sessions_dir).export(args.session_id, output, args.format)
    print(f"Exported {count} events to {output}")
    return 0


def run_delete(args, settings) -> int:
    SessionStore(settings.sessions_dir).delete(args.session_id)
    print(f"Deleted {args.session_id}")
    return 0


COMMANDS = {
    "watch": lambda args, settings: run_live(args, settings, record=False),
    "record": lambda args, settings: run_live(args, settings, record=True),
    "replay": run_replay,
    "list": run_list,
    "show": run_show,
    "export": run_export,
    "delete": run_delete,
}


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(log_level=args.log_level)
    except ConfigError as exc:
        return _fail(str(exc), 2)
    configure_logging(settings)

    command = args.command or "watch"
    try:
        return COMMANDS[command](args, settings)
    except SessionNotFoundError as exc:
        return _fail(str(exc))
    except ReplayCorruptionError as exc:
        return _fail(f"session log unreadable: {exc}")
