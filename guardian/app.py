"""
Guardian entry point.

Wires the configured device backend, authentication gate and dispatcher
into a ControlLoop, holds the single-instance lock, and runs either the
curses console or a headless log-to-stderr mode.
"""

from __future__ import annotations

import argparse
import os
import queue
import sys
import threading
from typing import List, Optional

from filelock import FileLock, Timeout

from guardian.auth import KEY_DATA_SIZE, AuthenticationGate, digest_hex
from guardian.devices import DeviceDirectory
from guardian.dispatcher import CommandDispatcher
from guardian.errors import ConfigError, DeviceError
from guardian.log import configure_logging, log_event
from guardian.loop import ControlLoop
from guardian.memory_backend import PlaceholderDeviceDirectory
from guardian.settings import (
    DEFAULT_REPORT_ID,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_SCRIPT_DIR,
    DEFAULT_SETTINGS_PATH,
    DEFAULT_VID,
    GuardianConfig,
    get_float,
    get_int,
    load_config,
    read_settings,
)

LOCK_NAME = "guardian.lock"


# ══════════════════════════════════════════════════════════════════════════════
# SINGLE INSTANCE LOCK
# ══════════════════════════════════════════════════════════════════════════════

def lock_path_for(settings_path: str) -> str:
    return os.path.join(os.path.dirname(os.path.abspath(settings_path)), LOCK_NAME)


def acquire_instance_lock(path: str) -> FileLock:
    """Acquire single-instance lock. Raises SystemExit if another instance running."""
    lock = FileLock(path)
    try:
        lock.acquire(timeout=0.1)
    except Timeout:
        print("ERROR: Another instance of the guardian is already running.")
        sys.exit(1)
    return lock


# ══════════════════════════════════════════════════════════════════════════════
# WIRING
# ══════════════════════════════════════════════════════════════════════════════

def build_directory(backend: str, vid: Optional[int], pid: Optional[int],
                    report_id: int, scan_interval: float,
                    stop_event: Optional[threading.Event] = None) -> DeviceDirectory:
    if backend == "placeholder":
        return PlaceholderDeviceDirectory(stop_event)

    try:
        from guardian.hid_backend import HidDeviceDirectory
    except ImportError:
        print("Missing required module: hid\n\nInstall with: pip install hidapi")
        sys.exit(1)

    return HidDeviceDirectory(vid, pid, report_id=report_id,
                              scan_interval=scan_interval, stop_event=stop_event)


class GuardianService:
    """Main application - orchestrates all components."""

    def __init__(self, config: GuardianConfig, headless: bool = False):
        self.config = config
        self.headless = headless

        self.stop_event = threading.Event()
        self.ui_queue: Optional[queue.Queue] = None if headless else queue.Queue()

        directory = build_directory(config.backend, config.vid, config.pid,
                                    config.report_id, config.scan_interval,
                                    stop_event=self.stop_event)
        self.loop = ControlLoop(
            directory,
            AuthenticationGate(config.expected_key_hash),
            CommandDispatcher(config.script_directory),
            key_id=config.key_id,
            device_timeout=config.device_timeout,
            command_timeout=config.command_timeout,
            ui_queue=self.ui_queue,
            stop_event=self.stop_event,
        )
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        cfg = self.config
        log_event(self.ui_queue, 'System', 'Starting guardian')
        log_event(self.ui_queue, 'System', f'Backend: {cfg.backend}, '
                  f'VID: {"Any" if cfg.vid is None else f"0x{cfg.vid:04X}"}, '
                  f'PID: {"Any" if cfg.pid is None else f"0x{cfg.pid:04X}"}')
        log_event(self.ui_queue, 'System', f'Scripts: {cfg.script_directory}')
        log_event(self.ui_queue, 'System',
                  f'Timeouts: device {cfg.device_timeout:g}s, command {cfg.command_timeout:g}s')

        for path in self.loop.dispatcher.missing_scripts():
            log_event(self.ui_queue, 'System', f'Missing dispatch script: {path}', "warning")

        self._thread = threading.Thread(target=self.loop.run, daemon=True)
        self._thread.name = "ControlLoop"
        self._thread.start()

    def run(self) -> None:
        """Run the application (blocks until quit)."""
        self.start()
        try:
            if self.headless:
                # Ctrl+C is the only way out in headless mode
                while self._thread.is_alive():
                    self._thread.join(timeout=0.5)
            else:
                from guardian.console import ConsoleUI
                ConsoleUI(self.loop, self.ui_queue).run()
        finally:
            self.stop()

    def stop(self) -> None:
        log_event(self.ui_queue, 'System', 'Shutting down...')
        self.loop.stop()
        if self._thread:
            self._thread.join(timeout=2.0)
        log_event(self.ui_queue, 'System', 'Shutdown complete')


# ══════════════════════════════════════════════════════════════════════════════
# ONE-SHOT COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def list_devices(settings_path: str) -> int:
    """Print every device the configured backend can see."""
    raw = read_settings(settings_path)
    directory = build_directory(
        raw.get('USB', 'BACKEND', fallback='hid').strip().lower(),
        get_int(raw, 'USB', 'VID', DEFAULT_VID),
        get_int(raw, 'USB', 'PID', None),
        get_int(raw, 'USB', 'REPORT_ID', DEFAULT_REPORT_ID),
        get_float(raw, 'USB', 'SCAN_INTERVAL', DEFAULT_SCAN_INTERVAL),
    )
    try:
        devices = directory.list_devices()
    except DeviceError as e:
        print(f"ERROR: {e}")
        return 1

    if not devices:
        print("No devices found.")
    for d in devices:
        print(f"{d.kind.value:<8} {d.id:<40} {d.name}")
    return 0


def check_scripts(settings_path: str) -> int:
    raw = read_settings(settings_path)
    script_dir = raw.get('GUARDIAN', 'SCRIPT_DIR', fallback=DEFAULT_SCRIPT_DIR).strip()
    dispatcher = CommandDispatcher(script_dir or DEFAULT_SCRIPT_DIR)

    missing = dispatcher.missing_scripts()
    for path in missing:
        print(f"MISSING  {path}")
    if missing:
        return 1
    print(f"All dispatch scripts present in {dispatcher.platform_dir}")
    return 0


def hash_key(path: str) -> int:
    """Print the digest to put in EXPECTED_KEY_HASH for a key file."""
    try:
        with open(path, 'rb') as f:
            data = f.read(KEY_DATA_SIZE)
    except OSError as e:
        print(f"ERROR: {e}")
        return 1
    print(digest_hex(data))
    return 0


# ══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ══════════════════════════════════════════════════════════════════════════════

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="token-guardian",
        description="Run privileged local actions only while an authenticated token is present.",
    )
    parser.add_argument("--settings", default=DEFAULT_SETTINGS_PATH,
                        help="path to settings.ini (created with defaults if missing)")
    parser.add_argument("--headless", action="store_true",
                        help="log to stderr instead of the curses console")
    parser.add_argument("--verbose", action="store_true", help="debug logging")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--list-devices", action="store_true",
                      help="print visible devices and exit")
    mode.add_argument("--check-scripts", action="store_true",
                      help="report missing dispatch scripts and exit")
    mode.add_argument("--hash-key", metavar="FILE",
                      help="print the expected key hash for a key file and exit")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.hash_key:
        return hash_key(args.hash_key)

    try:
        if args.list_devices:
            return list_devices(args.settings)
        if args.check_scripts:
            return check_scripts(args.settings)
        config = load_config(args.settings)
    except ConfigError as e:
        print(f"ERROR: {args.settings}: {e}")
        return 2

    configure_logging(
        config.log_path if config.log_enabled else None,
        level="DEBUG" if args.verbose else config.log_level,
        to_stderr=args.headless,
    )

    lock = acquire_instance_lock(lock_path_for(args.settings))
    try:
        service = GuardianService(config, headless=args.headless)
        try:
            service.run()
        except KeyboardInterrupt:
            print("\nInterrupted by user")
    finally:
        lock.release()

    return 0
