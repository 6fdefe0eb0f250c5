"""
In-memory device backend and the no-hardware placeholder.

MemoryDeviceChannel / MemoryDeviceDirectory are scripted stand-ins used by
the tests and by anyone wiring the loop without hardware. Queued items may
be exceptions, which are raised instead of returned, so failures can be
injected at any point of a session.
"""

from __future__ import annotations

import queue
import threading
from typing import List, Optional, Union

from guardian.devices import DeviceDescriptor, DeviceKind, DiscoveredDevice
from guardian.errors import DeviceError, DeviceNotFound, DeviceTimeout


class MemoryDeviceChannel:
    """Scripted device: fixed data, queued commands, recorded calls."""

    def __init__(self, device_id: str, name: str = "memory",
                 kind: DeviceKind = DeviceKind.TOKEN, data: bytes = b"",
                 commands: Optional[List[Union[str, Exception]]] = None):
        self.descriptor = DeviceDescriptor(name=name, id=device_id, kind=kind)
        self.data = data
        self.commands: queue.Queue = queue.Queue()
        for cmd in commands or []:
            self.commands.put(cmd)

        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.read_sizes: List[int] = []
        self.written: List[bytes] = []

        # Injected failures
        self.fail_connect: Optional[Exception] = None
        self.fail_disconnect: Optional[Exception] = None
        self.fail_read: Optional[Exception] = None
        self.fail_write: Optional[Exception] = None

    def push_command(self, command: Union[str, Exception]) -> None:
        self.commands.put(command)

    def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect is not None:
            raise self.fail_connect
        self.connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        if self.fail_disconnect is not None:
            raise self.fail_disconnect

    def read(self, size: int) -> bytes:
        self.read_sizes.append(size)
        if self.fail_read is not None:
            raise self.fail_read
        if not self.connected:
            raise DeviceError(f"{self.descriptor.name}: not connected")
        return self.data[:size]

    def write(self, data: bytes) -> None:
        if self.fail_write is not None:
            raise self.fail_write
        if not self.connected:
            raise DeviceError(f"{self.descriptor.name}: not connected")
        self.written.append(bytes(data))

    def get_info(self) -> DeviceDescriptor:
        return self.descriptor

    def wait_for_command(self, timeout: float) -> str:
        try:
            item = self.commands.get(timeout=timeout)
        except queue.Empty:
            raise DeviceTimeout(f"{self.descriptor.name}: no command within {timeout}s") from None
        if isinstance(item, Exception):
            raise item
        return item


class MemoryDeviceDirectory:
    """Hands out channels in the order they were plugged in."""

    def __init__(self, channels: Optional[List[MemoryDeviceChannel]] = None):
        self._present: List[MemoryDeviceChannel] = []
        self._arrivals: queue.Queue = queue.Queue()
        for ch in channels or []:
            self.plug(ch)

    def plug(self, channel: MemoryDeviceChannel) -> None:
        self._present.append(channel)
        self._arrivals.put(channel)

    def fail_next_wait(self, error: Exception) -> None:
        """Make the next wait_for_device raise ``error``."""
        self._arrivals.put(error)

    def unplug(self, channel: MemoryDeviceChannel) -> None:
        if channel in self._present:
            self._present.remove(channel)

    def list_devices(self) -> List[DeviceDescriptor]:
        return [ch.get_info() for ch in self._present]

    def get_device(self, device_id: str) -> MemoryDeviceChannel:
        for ch in self._present:
            if ch.descriptor.id == device_id:
                return ch
        raise DeviceNotFound(f"No device with id {device_id!r}")

    def wait_for_device(self, timeout: float) -> DiscoveredDevice:
        try:
            item = self._arrivals.get(timeout=timeout)
        except queue.Empty:
            raise DeviceTimeout(f"No device within {timeout}s") from None
        if isinstance(item, Exception):
            raise item
        return DiscoveredDevice(item.get_info(), item)


class PlaceholderDeviceDirectory:
    """
    Directory for hosts with no token backend.

    Reports no devices and lets every wait run out, so the loop idles
    harmlessly until a real backend is configured.
    """

    def __init__(self, stop_event: Optional[threading.Event] = None):
        self._stop = stop_event or threading.Event()

    def list_devices(self) -> List[DeviceDescriptor]:
        return []

    def get_device(self, device_id: str) -> MemoryDeviceChannel:
        raise DeviceNotFound(f"No device with id {device_id!r} (placeholder backend)")

    def wait_for_device(self, timeout: float) -> DiscoveredDevice:
        self._stop.wait(timeout)
        raise DeviceTimeout("Placeholder backend never reports devices")
