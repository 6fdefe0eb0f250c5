"""Shared fixtures for the guardian test suite."""

import hashlib

import pytest

from guardian.auth import AuthenticationGate
from guardian.devices import DeviceKind
from guardian.errors import UnknownCommandError
from guardian.loop import ControlLoop
from guardian.memory_backend import MemoryDeviceChannel, MemoryDeviceDirectory

KEY_ID = "test_key_id"
KEY_DATA = b"test_key_data"
KEY_HASH = hashlib.sha256(KEY_DATA).hexdigest()

# Short enough that timeouts do not slow the suite down
FAST_TIMEOUT = 0.01


class FakeDispatcher:
    """Records commands; fails on anything listed in ``failing``."""

    def __init__(self, failing=(), on_command=None):
        self.failing = set(failing)
        self.on_command = on_command
        self.commands = []

    def handle_command(self, command):
        self.commands.append(command)
        if self.on_command is not None:
            self.on_command(command)
        if command in self.failing:
            raise UnknownCommandError(f"Unknown command: {command!r}")
        return f"did {command}"


class SpyGate(AuthenticationGate):
    def __init__(self, expected_key_hash):
        super().__init__(expected_key_hash)
        self.calls = 0

    def authenticate_key(self, token):
        self.calls += 1
        return super().authenticate_key(token)


@pytest.fixture
def make_token():
    def _make(device_id=KEY_ID, data=KEY_DATA, commands=None,
              kind=DeviceKind.TOKEN, name="test-token"):
        return MemoryDeviceChannel(device_id, name=name, kind=kind,
                                   data=data, commands=commands)
    return _make


@pytest.fixture
def gate():
    return SpyGate(KEY_HASH)


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def directory():
    return MemoryDeviceDirectory()


@pytest.fixture
def make_loop(directory, gate, dispatcher):
    def _make(**kwargs):
        params = dict(
            directory=directory,
            gate=gate,
            dispatcher=dispatcher,
            key_id=KEY_ID,
            device_timeout=FAST_TIMEOUT,
            command_timeout=FAST_TIMEOUT,
        )
        params.update(kwargs)
        return ControlLoop(**params)
    return _make
