"""
HID token backend (hidapi)
==========================

Production DeviceChannel / DeviceDirectory over USB HID.

Wire framing:
-------------
- Token data: streamed as input reports. ``read(size)`` collects reports
  until it has ``size`` bytes or a read times out.
- Host -> token: 64-byte output reports, prefixed with the report id and
  zero padded.
- Commands: the token sends an input report as a TRIGGER meaning "drain
  my feature report buffer now". Each feature report carries one
  NUL-padded ASCII command; an all-zero report means the buffer is empty.

Discovery:
----------
The directory rescans ``hid.enumerate()`` every ``scan_interval`` seconds.
A device is reported once per physical presence: it becomes reportable
again only after it has disappeared from a scan (unplug / replug).
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, Dict, List, Optional

import hid

from guardian.devices import DeviceDescriptor, DeviceKind, DiscoveredDevice
from guardian.errors import DeviceError, DeviceNotFound, DeviceTimeout
from guardian.log import log_event

# Protocol constants
DEFAULT_REPORT_SIZE    = 64
FEATURE_REPORT_ID      = 0

# Blocking read slice (ms) - bounds how late a deadline can be noticed
RX_READ_TIMEOUT_MS     = 250

# Safety cap on feature reports drained per trigger
MAX_DRAIN              = 64

# Stale feature reports discarded on connect
MAX_BACKLOG_CLEAR      = 100

# hidapi raises OSError for I/O failures and ValueError on a closed handle
HID_ERRORS = (OSError, ValueError)


def extract_feature_payload(resp: List[int], report_id: int = 0) -> bytes:
    """Extract payload from HID feature report, stripping report ID if present."""
    if not resp:
        return b""

    if len(resp) > 256:
        resp = resp[:256]

    if resp[0] == report_id:
        return bytes(resp[1:])
    return bytes(resp)


def device_key(info: dict) -> str:
    """Unique key for an enumerated device: serial number, else OS path."""
    serial = info.get('serial_number', '') or ''
    if serial:
        return serial
    path = info.get('path', b'')
    if isinstance(path, bytes):
        return path.decode(errors='replace')
    return str(path)


class HidDeviceChannel:
    """
    One HID device.

    The channel is created closed; ``connect()`` opens the OS handle and
    clears any feature reports queued before the session started, so
    nothing sent before authentication can be executed after it.
    """

    def __init__(self, info: dict, kind: DeviceKind, report_id: int = FEATURE_REPORT_ID):
        self.info = info
        self.report_id = report_id
        self.descriptor = DeviceDescriptor(
            name=self._display_name(info),
            id=device_key(info),
            kind=kind,
        )
        self.dev: Optional[hid.device] = None
        self._pending: Deque[str] = deque()

    @staticmethod
    def _display_name(info: dict) -> str:
        product = info.get('product_string', '') or ''
        serial = info.get('serial_number', '') or ''
        if product:
            return product
        if serial:
            return serial
        return f"HID-{info.get('vendor_id', 0):04X}:{info.get('product_id', 0):04X}"

    def _require_open(self) -> hid.device:
        if self.dev is None:
            raise DeviceError(f"{self.descriptor.name}: not connected")
        return self.dev

    def connect(self) -> None:
        if self.dev is not None:
            return
        dev = hid.device()
        try:
            dev.open_path(self.info['path'])
        except HID_ERRORS as e:
            raise DeviceError(f"{self.descriptor.name}: open failed: {e}") from e
        self.dev = dev
        self._pending.clear()
        self._clear_backlog()

    def disconnect(self) -> None:
        dev, self.dev = self.dev, None
        self._pending.clear()
        if dev is None:
            return
        try:
            dev.close()
        except HID_ERRORS as e:
            raise DeviceError(f"{self.descriptor.name}: close failed: {e}") from e

    def read(self, size: int) -> bytes:
        dev = self._require_open()
        buf = bytearray()
        try:
            while len(buf) < size:
                data = dev.read(DEFAULT_REPORT_SIZE, timeout_ms=RX_READ_TIMEOUT_MS)
                if not data:
                    break
                buf.extend(data)
        except HID_ERRORS as e:
            raise DeviceError(f"{self.descriptor.name}: read failed: {e}") from e
        return bytes(buf[:size])

    def write(self, data: bytes) -> None:
        dev = self._require_open()
        offset = 0
        try:
            while offset < len(data):
                chunk = data[offset:offset + DEFAULT_REPORT_SIZE]
                report = bytes([self.report_id]) + chunk.ljust(DEFAULT_REPORT_SIZE, b'\x00')
                if dev.write(report) < 0:
                    raise DeviceError(f"{self.descriptor.name}: write rejected")
                offset += DEFAULT_REPORT_SIZE
        except HID_ERRORS as e:
            raise DeviceError(f"{self.descriptor.name}: write failed: {e}") from e

    def get_info(self) -> DeviceDescriptor:
        return self.descriptor

    def wait_for_command(self, timeout: float) -> str:
        """
        Block until the token triggers and a command is drained.

        Reads are sliced to RX_READ_TIMEOUT_MS so the deadline is honoured
        even when the token stays silent.
        """
        if self._pending:
            return self._pending.popleft()

        dev = self._require_open()
        deadline = time.monotonic() + timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise DeviceTimeout(f"{self.descriptor.name}: no command within {timeout}s")

            slice_ms = max(1, min(RX_READ_TIMEOUT_MS, int(remaining * 1000)))
            try:
                data = dev.read(DEFAULT_REPORT_SIZE, timeout_ms=slice_ms)
            except HID_ERRORS as e:
                raise DeviceError(f"{self.descriptor.name}: read failed: {e}") from e

            if not data:
                continue

            # Received trigger - drain feature reports
            self._pending.extend(self._drain_feature_reports())
            if self._pending:
                return self._pending.popleft()

    def _drain_feature_reports(self) -> List[str]:
        """Drain all pending feature reports. Returns the command strings."""
        dev = self._require_open()
        messages: List[str] = []

        for _ in range(MAX_DRAIN):
            try:
                resp = dev.get_feature_report(self.report_id, DEFAULT_REPORT_SIZE + 1)
            except HID_ERRORS as e:
                raise DeviceError(f"{self.descriptor.name}: feature read failed: {e}") from e

            payload = extract_feature_payload(resp, report_id=self.report_id)

            # Empty buffer = all zeros
            if not any(payload):
                break

            msg = payload.rstrip(b'\x00').decode(errors='replace').strip()
            if msg:
                messages.append(msg)

        return messages

    def _clear_backlog(self) -> None:
        """Discard stale feature report data left from before this session."""
        dev = self._require_open()
        for _ in range(MAX_BACKLOG_CLEAR):
            try:
                resp = dev.get_feature_report(self.report_id, DEFAULT_REPORT_SIZE + 1)
            except HID_ERRORS:
                # Tokens without a feature buffer simply have nothing to clear
                return
            if not any(extract_feature_payload(resp, report_id=self.report_id)):
                return


class HidDeviceDirectory:
    """
    Hot-plug aware enumeration of HID devices.

    ``token_vid`` / ``token_pid`` identify the token class; anything else
    present on the bus is reported as OTHER so the loop can discard it.
    """

    def __init__(self, token_vid: Optional[int], token_pid: Optional[int] = None,
                 report_id: int = FEATURE_REPORT_ID, scan_interval: float = 1.0,
                 stop_event: Optional[threading.Event] = None):
        self.token_vid = token_vid
        self.token_pid = token_pid
        self.report_id = report_id
        self.scan_interval = scan_interval
        self._stop = stop_event or threading.Event()
        self._reported: set = set()

    def classify(self, info: dict) -> DeviceKind:
        if self.token_vid is None or info.get('vendor_id') != self.token_vid:
            return DeviceKind.OTHER
        if self.token_pid is not None and info.get('product_id') != self.token_pid:
            return DeviceKind.OTHER
        return DeviceKind.TOKEN

    def _enumerate(self) -> Dict[str, dict]:
        """Map of key -> info for every device currently on the bus."""
        devices: Dict[str, dict] = {}
        try:
            found = hid.enumerate()
        except HID_ERRORS as e:
            raise DeviceError(f"HID enumeration failed: {e}") from e
        for d in found:
            key = device_key(d)
            if key and key not in devices:
                devices[key] = d
        return devices

    def _channel(self, info: dict) -> HidDeviceChannel:
        return HidDeviceChannel(info, self.classify(info), report_id=self.report_id)

    def list_devices(self) -> List[DeviceDescriptor]:
        return [self._channel(info).get_info() for info in self._enumerate().values()]

    def get_device(self, device_id: str) -> HidDeviceChannel:
        info = self._enumerate().get(device_id)
        if info is None:
            raise DeviceNotFound(f"No HID device with id {device_id!r}")
        return self._channel(info)

    def _scan_devices(self) -> Optional[HidDeviceChannel]:
        present = self._enumerate()

        # Detect disconnections
        self._reported &= set(present)

        # Detect new connections, tokens first
        fresh = [info for key, info in present.items() if key not in self._reported]
        if not fresh:
            return None
        fresh.sort(key=lambda d: self.classify(d) is not DeviceKind.TOKEN)

        info = fresh[0]
        self._reported.add(device_key(info))
        return self._channel(info)

    def wait_for_device(self, timeout: float) -> DiscoveredDevice:
        deadline = time.monotonic() + timeout

        while True:
            try:
                channel = self._scan_devices()
            except DeviceError as e:
                log_event(None, 'Hotplug', f"Scan error: {e}", "warning")
                channel = None

            if channel is not None:
                return DiscoveredDevice(channel.get_info(), channel)

            remaining = deadline - time.monotonic()
            if remaining <= 0 or self._stop.is_set():
                raise DeviceTimeout(f"No device within {timeout}s")
            self._stop.wait(min(self.scan_interval, remaining))
