"""Identity token: a device channel plus the key id it must present."""

from __future__ import annotations

from typing import Optional

from guardian.devices import DeviceChannel, DeviceDescriptor, DeviceKind
from guardian.errors import IdentityMismatch, WrongDeviceType


class IdentityToken:
    """
    Exclusive owner of one DeviceChannel for the length of a session.

    The token adds identity, not transport: data and command calls go
    straight to the channel. ``initialized`` is only True between a
    successful ``initialize()`` and the next ``disconnect()``.
    """

    def __init__(self, channel: DeviceChannel, key_id: str):
        self.channel = channel
        self.key_id = key_id
        self.initialized = False
        self.descriptor: Optional[DeviceDescriptor] = None

    def initialize(self) -> None:
        """Connect and check that this is the expected token."""
        self.initialized = False
        self.channel.connect()
        info = self.channel.get_info()
        self.descriptor = info

        if info.kind is not DeviceKind.TOKEN:
            raise WrongDeviceType(f"{info.name}: not a token ({info.kind.value})")
        if info.id != self.key_id:
            raise IdentityMismatch(f"{info.name}: unexpected key id")

        self.initialized = True

    def disconnect(self) -> None:
        self.initialized = False
        self.channel.disconnect()

    def read_data(self, size: int) -> bytes:
        return self.channel.read(size)

    def write_data(self, data: bytes) -> None:
        self.channel.write(data)

    def wait_for_command(self, timeout: float) -> str:
        return self.channel.wait_for_command(timeout)

    @property
    def name(self) -> str:
        return self.descriptor.name if self.descriptor else "token"
