"""
Plain console renderer and key reader.

The renderer only ever reads AppSnapshots; the key reader only ever
publishes UiActions. Neither touches state directly.

Keys (type one and press Enter):
  m  cycle view mode        1-4  pick view mode
  j  next insight           k    previous insight
  a  accept selected        r    reject selected
  y  confirm                n    cancel
  x  clear insights         ?    help
  f <path>  switch file     q    quit
"""

import asyncio
import logging
import sys
import threading
from typing import Optional, TextIO

from coco.models.event import UiAction, UiActionType
from coco.models.insight import Insight, Severity
from coco.models.state import VIEW_MODE_CYCLE, AppSnapshot, ViewMode

logger = logging.getLogger(__name__)

RESET = "\033[0m"
GREY = "\033[90m"
BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
BOLD = "\033[1m"
CLEAR_SCREEN = "\033[2J\033[H"

REFRESH_HZ = 20
CODE_LINES = 30

_SEVERITY_COLORS = {
    Severity.INFO: BLUE,
    Severity.WARNING: YELLOW,
    Severity.ERROR: RED,
    Severity.CRITICAL: RED + BOLD,
}

_KEYS = {
    "m": UiActionType.TOGGLE_MODE,
    "j": UiActionType.SELECT_NEXT,
    "k": UiActionType.SELECT_PREV,
    "a": UiActionType.ACCEPT,
    "r": UiActionType.REJECT,
    "y": UiActionType.CONFIRM,
    "n": UiActionType.CANCEL,
    "x": UiActionType.CLEAR,
    "?": UiActionType.HELP,
    "q": UiActionType.QUIT,
}

HELP_TEXT = __doc__.split("Keys (type one and press Enter):", 1)[1].strip("\n")


def parse_key(line: str) -> Optional[UiAction]:
    text = line.strip()
    if not text:
        return None
    if text.startswith("f "):
        return UiAction(action=UiActionType.SELECT_FILE, value=text[2:].strip())
    if text in ("1", "2", "3", "4"):
        return UiAction(action=UiActionType.SET_MODE, value=VIEW_MODE_CYCLE[int(text) - 1].value)
    action = _KEYS.get(text[0].lower())
    return UiAction(action=action) if action else None


# ─── Rendering ─────────────────────────────────────────────────────────

def _insight_line(insight: Insight, selected: bool) -> str:
    color = _SEVERITY_COLORS.get(insight.severity, "")
    marker = f"{BOLD}›{RESET}" if selected else " "
    where = ""
    if insight.range:
        where = f"{GREY}L{insight.range.start_line}{RESET} "
    first_line = insight.message.splitlines()[0] if insight.message else ""
    return f"{marker} {color}[{insight.kind.value}]{RESET} {where}{first_line}"


def _insight_block(snapshot: AppSnapshot) -> list[str]:
    insights = snapshot.insights_for(snapshot.current_file)
    if not insights:
        return [f"{GREY}  (no insights yet){RESET}"]
    lines = []
    for index, insight in enumerate(insights):
        lines.append(_insight_line(insight, index == snapshot.selected))
        if index == snapshot.selected and insight.suggestion:
            lines.append(f"    {GREEN}→ {insight.suggestion}{RESET}")
    return lines


def _code_block(snapshot: AppSnapshot) -> list[str]:
    handle = snapshot.file(snapshot.current_file)
    if handle is None:
        return [f"{GREY}  (waiting for changes){RESET}"]
    code = handle.content.splitlines()[:CODE_LINES]
    return [f"{GREY}{n:>4}{RESET} {line}" for n, line in enumerate(code, start=1)]


def render_lines(snapshot: AppSnapshot) -> list[str]:
    mode = snapshot.mode
    header = (
        f"{BOLD}coco{RESET} {GREY}#{snapshot.sequence} · {mode.value} · "
        f"{len(snapshot.files)} files · {snapshot.request_count} requests{RESET}"
    )
    lines = [header]
    if snapshot.current_file:
        lines.append(f"{BOLD}{snapshot.current_file}{RESET}")

    if mode == ViewMode.SIDE_BY_SIDE:
        lines += _code_block(snapshot) + [""] + _insight_block(snapshot)
    elif mode == ViewMode.FULL:
        for handle in snapshot.files:
            lines.append(f"{BOLD}── {handle.path}{RESET}")
            for insight in snapshot.insights_for(handle.path):
                lines.append(_insight_line(insight, False))
    elif mode == ViewMode.MINIMAL:
        count = len(snapshot.insights_for(snapshot.current_file))
        lines.append(f"{count} insights")
    elif mode == ViewMode.THOUGHTS_ONLY:
        lines += _insight_block(snapshot)
    else:
        raise ValueError(f"unhandled view mode {mode!r}")

    if snapshot.pending:
        verb = snapshot.pending.action
        lines.append(f"{YELLOW}{verb} selected insight? [y/n]{RESET}")
    if snapshot.diagnostics:
        last = snapshot.diagnostics[-1]
        lines.append(f"{GREY}{last.source}: {last.message}{RESET}")
    if snapshot.show_help:
        lines.append(HELP_TEXT)
    return lines


class ConsoleRenderer:
    """Redraws at most REFRESH_HZ times per second, only when state changed."""

    def __init__(self, out: TextIO = sys.stdout, *, clear: bool = True):
        self._out = out
        self._clear = clear
        self._drawn_sequence = -1

    def draw(self, snapshot: AppSnapshot) -> bool:
        if snapshot.sequence == self._drawn_sequence:
            return False
        self._drawn_sequence = snapshot.sequence
        text = "\n".join(render_lines(snapshot))
        self._out.write((CLEAR_SCREEN if self._clear else "") + text + "\n")
        self._out.flush()
        return True

    async def run(self, bus, stop: asyncio.Event) -> None:
        while not stop.is_set():
            self.draw(bus.snapshot)
            try:
                await asyncio.wait_for(stop.wait(), timeout=1 / REFRESH_HZ)
            except asyncio.TimeoutError:
                pass
        self.draw(bus.snapshot)


class KeyReader:
    """Reads stdin on a daemon thread and publishes UiActions to the bus."""

    def __init__(self, bus, stream: TextIO = sys.stdin):
        self._bus = bus
        self._stream = stream

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        thread = threading.Thread(target=self._read, args=(loop,), name="coco-keys", daemon=True)
        thread.start()

    def _read(self, loop: asyncio.AbstractEventLoop) -> None:
        for line in self._stream:
            action = parse_key(line)
            if action is None:
                continue
            try:
                loop.call_soon_threadsafe(self._bus.publish_nowait, action)
            except RuntimeError:
                # loop already closed
                return
