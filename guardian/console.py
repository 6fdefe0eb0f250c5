"""
Curses status console.

Runs on the main thread while the control loop runs on a worker thread.
The console never touches the device or the dispatcher: it only drains
the event queue and reads the loop's counters.
"""

from __future__ import annotations

import curses
import queue
import threading
from collections import deque
from datetime import datetime
from typing import TYPE_CHECKING, Deque

from guardian.loop import CommandResult, SessionState

if TYPE_CHECKING:
    from guardian.loop import ControlLoop

# UI refresh interval (ms)
UI_REFRESH_MS          = 100

# Log history for UI display
LOG_HISTORY_SIZE       = 2000


class ConsoleUI:

    COLOR_RED    = 1
    COLOR_GREEN  = 2
    COLOR_YELLOW = 3
    COLOR_CYAN   = 4

    def __init__(self, loop: ControlLoop, ui_queue: queue.Queue):
        self.loop = loop
        self.uiq = ui_queue
        self._running = threading.Event()

        self._log: Deque[str] = deque(maxlen=LOG_HISTORY_SIZE)
        self.state = SessionState.IDLE
        self.last_command = "(none)"

    def run(self) -> None:
        """Main entry point - runs curses wrapper."""
        curses.wrapper(self._main_loop)

    def stop(self) -> None:
        self._running.clear()

    def _main_loop(self, stdscr) -> None:
        curses.curs_set(0)
        curses.use_default_colors()

        curses.init_pair(self.COLOR_RED, curses.COLOR_RED, -1)
        curses.init_pair(self.COLOR_GREEN, curses.COLOR_GREEN, -1)
        curses.init_pair(self.COLOR_YELLOW, curses.COLOR_YELLOW, -1)
        curses.init_pair(self.COLOR_CYAN, curses.COLOR_CYAN, -1)

        # getch timeout doubles as the refresh tick
        stdscr.timeout(UI_REFRESH_MS)
        self._running.set()

        while self._running.is_set():
            self.consume_events()
            self._paint(stdscr)

            ch = stdscr.getch()
            if ch == ord('q') or ch == 27:
                self._running.clear()

    def consume_events(self) -> None:
        """Process all pending UI events."""
        while True:
            try:
                event = self.uiq.get_nowait()
            except queue.Empty:
                break

            typ, *rest = event

            if typ == 'state':
                self.state = rest[0]

            elif typ == 'command':
                result: CommandResult = rest[0]
                self.last_command = f"{result.command} ({'ok' if result.ok else 'failed'})"

            elif typ == 'log':
                source, msg = rest
                timestamp = datetime.now().strftime("%H:%M:%S")
                self._log.append(f"[{timestamp}] [{source}] {msg}")

    def _state_attr(self) -> int:
        if self.state is SessionState.COMMAND_LOOP:
            return curses.color_pair(self.COLOR_GREEN)
        if self.state in (SessionState.INITIALIZING, SessionState.AUTHENTICATING):
            return curses.color_pair(self.COLOR_YELLOW)
        if self.state is SessionState.DISCONNECTING:
            return curses.color_pair(self.COLOR_RED)
        return curses.color_pair(self.COLOR_CYAN)

    def _paint(self, stdscr) -> None:
        stdscr.erase()
        h, w = stdscr.getmaxyx()
        stats = self.loop.stats

        y = 0
        self._addstr(stdscr, y, 0, f"State: {self.state.value}", w, self._state_attr())
        y += 1

        header = (
            f"Sessions: {stats.sessions}   "
            f"Authenticated: {stats.authenticated}   "
            f"Rejected: {stats.rejected}   "
            f"Commands ok/failed: {stats.commands_ok}/{stats.commands_failed}"
        )
        self._addstr(stdscr, y, 0, header, w)
        y += 1
        self._addstr(stdscr, y, 0, f"Last command: {self.last_command}", w)
        y += 2

        # Log area
        log_start = y
        log_lines = max(0, (h - 1) - log_start)
        if log_lines > 0 and self._log:
            log_len = len(self._log)
            start_idx = max(0, log_len - log_lines)
            for i, idx in enumerate(range(start_idx, log_len)):
                self._addstr(stdscr, log_start + i, 0, self._log[idx], w)

        self._addstr(stdscr, h - 1, 0, "Guardian running  |  Press 'q' to quit", w, curses.A_DIM)

        stdscr.noutrefresh()
        curses.doupdate()

    def _addstr(self, stdscr, y: int, x: int, text: str, max_width: int,
                attr: int = curses.A_NORMAL) -> None:
        """Safe addstr that handles boundaries."""
        h, w = stdscr.getmaxyx()
        if y < 0 or y >= h or x >= w:
            return

        available = min(max_width, w) - x - 1
        if available <= 0:
            return

        try:
            stdscr.addstr(y, x, text[:available], attr)
        except curses.error:
            pass
