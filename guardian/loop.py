"""
Control loop
============

One session at a time:

    IDLE -> WAITING_FOR_DEVICE -> INITIALIZING -> AUTHENTICATING
         -> COMMAND_LOOP -> DISCONNECTING -> WAITING_FOR_DEVICE -> ...

Every failure is a logged transition back to WAITING_FOR_DEVICE. Timeouts
are the re-arm mechanism: a silent token is disconnected and must be
authenticated from scratch in its next session. Commands are dispatched
strictly one at a time; the next command is not awaited until the
previous action has exited and been reported.
"""

from __future__ import annotations

import enum
import queue
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Tuple

from guardian.auth import AuthenticationGate
from guardian.devices import DeviceDirectory
from guardian.dispatcher import CommandDispatcher
from guardian.errors import (
    AuthenticationError,
    DeviceError,
    DeviceTimeout,
    DispatchError,
    TokenError,
)
from guardian.log import log_event
from guardian.token import IdentityToken

RECENT_RESULTS_SIZE = 50

# Pause after an unexpected error before the next session
ERROR_BACKOFF_S = 1.0


class SessionState(enum.Enum):
    IDLE = "IDLE"
    WAITING_FOR_DEVICE = "WAITING FOR DEVICE"
    INITIALIZING = "INITIALIZING"
    AUTHENTICATING = "AUTHENTICATING"
    COMMAND_LOOP = "READY"
    DISCONNECTING = "DISCONNECTING"


class SessionOutcome(enum.Enum):
    NO_DEVICE = "no device"
    IGNORED = "not a token"
    REJECTED_IDENTITY = "identity rejected"
    REJECTED_AUTH = "authentication failed"
    ENDED = "session ended"


@dataclass
class LoopStats:
    sessions: int = 0
    authenticated: int = 0
    rejected: int = 0
    commands_ok: int = 0
    commands_failed: int = 0


@dataclass(frozen=True)
class CommandResult:
    command: str
    ok: bool
    output: str


class ControlLoop:
    """
    Orchestrates discovery, identity, authentication and dispatch.

    ``run_session()`` performs exactly one pass and returns how it ended;
    ``run()`` repeats passes until ``stop()``. Events for the console are
    posted to ``ui_queue`` when one is given:

        ('state', SessionState)
        ('command', CommandResult)
        ('log', source, message)
    """

    def __init__(self, directory: DeviceDirectory, gate: AuthenticationGate,
                 dispatcher: CommandDispatcher, key_id: str,
                 device_timeout: float, command_timeout: float,
                 ui_queue: Optional[queue.Queue] = None,
                 stop_event: Optional[threading.Event] = None):
        self.directory = directory
        self.gate = gate
        self.dispatcher = dispatcher
        self.key_id = key_id
        self.device_timeout = device_timeout
        self.command_timeout = command_timeout
        self.uiq = ui_queue
        self._stop = stop_event or threading.Event()

        self.state = SessionState.IDLE
        self.stats = LoopStats()
        self.recent: Deque[CommandResult] = deque(maxlen=RECENT_RESULTS_SIZE)

    # ──────────────────────────────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────────────────────────────

    def run(self) -> None:
        """Run sessions until stop() is called."""
        log_event(self.uiq, 'Guardian', 'Control loop started')
        while not self._stop.is_set():
            try:
                self.run_session()
            except Exception as e:
                log_event(self.uiq, 'Guardian', f"Unexpected error: {e!r}", "exception")
                self._stop.wait(ERROR_BACKOFF_S)
        self._set_state(SessionState.IDLE)
        log_event(self.uiq, 'Guardian', 'Control loop stopped')

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_session(self) -> SessionOutcome:
        """One pass from WAITING_FOR_DEVICE back to WAITING_FOR_DEVICE."""
        try:
            return self._session()
        finally:
            self._set_state(SessionState.WAITING_FOR_DEVICE)

    # ──────────────────────────────────────────────────────────────────────
    # States
    # ──────────────────────────────────────────────────────────────────────

    def _session(self) -> SessionOutcome:
        self._set_state(SessionState.WAITING_FOR_DEVICE)
        try:
            found = self.directory.wait_for_device(self.device_timeout)
        except DeviceTimeout:
            log_event(self.uiq, 'Guardian', "No device detected", "debug")
            return SessionOutcome.NO_DEVICE
        except DeviceError as e:
            log_event(self.uiq, 'Guardian', f"Device discovery failed: {e}", "warning")
            return SessionOutcome.NO_DEVICE

        if not found.descriptor.is_token():
            log_event(self.uiq, found.descriptor.name, "Connected device is not a token. Ignoring.")
            return SessionOutcome.IGNORED

        self.stats.sessions += 1
        token = IdentityToken(found.channel, self.key_id)
        try:
            return self._token_session(token, found.descriptor.name)
        finally:
            self._release(token)

    def _token_session(self, token: IdentityToken, name: str) -> SessionOutcome:
        self._set_state(SessionState.INITIALIZING)
        log_event(self.uiq, name, "Token detected. Initializing...")
        try:
            token.initialize()
        except (TokenError, DeviceError) as e:
            self.stats.rejected += 1
            log_event(self.uiq, name, f"Failed to initialize token: {e}", "warning")
            return SessionOutcome.REJECTED_IDENTITY

        self._set_state(SessionState.AUTHENTICATING)
        try:
            self.gate.authenticate_key(token)
        except AuthenticationError as e:
            self.stats.rejected += 1
            log_event(self.uiq, token.name, f"Authentication failed: {e}", "warning")
            return SessionOutcome.REJECTED_AUTH

        self.stats.authenticated += 1
        log_event(self.uiq, token.name, "Token authenticated. Waiting for commands...")

        self._set_state(SessionState.COMMAND_LOOP)
        self._command_loop(token)

        self._set_state(SessionState.DISCONNECTING)
        log_event(self.uiq, token.name, "Disconnecting token...")
        return SessionOutcome.ENDED

    def _command_loop(self, token: IdentityToken) -> None:
        while not self._stop.is_set():
            try:
                command = token.wait_for_command(self.command_timeout)
            except DeviceTimeout:
                log_event(self.uiq, token.name,
                          f"No command within {self.command_timeout:g}s")
                return
            except DeviceError as e:
                log_event(self.uiq, token.name, f"Error waiting for command: {e}", "warning")
                return

            log_event(self.uiq, token.name, f"Received command: {command}")
            self.dispatch(command)

    def dispatch(self, command: str) -> CommandResult:
        """Run one command to completion and report its outcome."""
        try:
            output = self.dispatcher.handle_command(command)
        except DispatchError as e:
            self.stats.commands_failed += 1
            result = CommandResult(command, False, str(e))
            log_event(self.uiq, 'Dispatch', f"Error executing command: {e}", "error")
        else:
            self.stats.commands_ok += 1
            result = CommandResult(command, True, output)
            log_event(self.uiq, 'Dispatch', f"Command executed successfully: {command}")

        self.recent.append(result)
        self._post(('command', result))
        return result

    # ──────────────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────────────

    def _release(self, token: IdentityToken) -> None:
        try:
            token.disconnect()
        except DeviceError as e:
            log_event(self.uiq, token.name, f"Error disconnecting token: {e}", "warning")

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        self.state = state
        self._post(('state', state))

    def _post(self, event: Tuple) -> None:
        if self.uiq is None:
            return
        try:
            self.uiq.put_nowait(event)
        except queue.Full:
            pass
