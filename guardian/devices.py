"""
Device capability interfaces.

A DeviceChannel is one physical device: open/close it, move bytes, and
block for the next command string. A DeviceDirectory is the discovery
boundary: it enumerates what is plugged in and hands a fresh, unconnected
channel to the caller, tagged with the device class so the caller never
has to inspect the channel itself.

Implementations:
- hid_backend.HidDeviceChannel / HidDeviceDirectory   (hidapi)
- memory_backend.MemoryDeviceChannel / MemoryDeviceDirectory   (tests)
- memory_backend.PlaceholderDeviceDirectory   (no hardware)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, NamedTuple, Protocol


class DeviceKind(enum.Enum):
    TOKEN = "token"
    STORAGE = "storage"
    OTHER = "other"


@dataclass(frozen=True)
class DeviceDescriptor:
    """Snapshot of a device. Used for classification, never for authentication."""

    name: str
    id: str
    kind: DeviceKind

    def is_token(self) -> bool:
        return self.kind is DeviceKind.TOKEN


class DeviceChannel(Protocol):
    """Transport to one device. All methods may raise DeviceError."""

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> None: ...

    def get_info(self) -> DeviceDescriptor: ...

    def wait_for_command(self, timeout: float) -> str:
        """Block for the next command. Raises DeviceTimeout when none arrives."""
        ...


class DiscoveredDevice(NamedTuple):
    """A newly observed device, tagged by ``descriptor.kind``."""

    descriptor: DeviceDescriptor
    channel: DeviceChannel

    @property
    def kind(self) -> DeviceKind:
        return self.descriptor.kind


class DeviceDirectory(Protocol):
    """Enumerates devices and waits for new ones to appear."""

    def list_devices(self) -> List[DeviceDescriptor]: ...

    def get_device(self, device_id: str) -> DeviceChannel:
        """Raises DeviceNotFound when no such device is present."""
        ...

    def wait_for_device(self, timeout: float) -> DiscoveredDevice:
        """Block until a device is observed. Raises DeviceTimeout otherwise."""
        ...
