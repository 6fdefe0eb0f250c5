import queue

import pytest

from guardian import loop as loop_module
from guardian.devices import DeviceKind
from guardian.errors import DeviceError
from guardian.loop import SessionOutcome, SessionState

from conftest import FakeDispatcher


def _states(uiq):
    states = []
    while True:
        try:
            event = uiq.get_nowait()
        except queue.Empty:
            return states
        if event[0] == 'state':
            states.append(event[1])


def test_no_device_is_not_fatal(make_loop):
    loop = make_loop()
    assert loop.run_session() is SessionOutcome.NO_DEVICE
    assert loop.state is SessionState.WAITING_FOR_DEVICE


def test_discovery_error_returns_to_waiting(make_loop, directory):
    directory.fail_next_wait(DeviceError("enumeration failed"))
    loop = make_loop()
    assert loop.run_session() is SessionOutcome.NO_DEVICE
    assert loop.state is SessionState.WAITING_FOR_DEVICE


def test_non_token_is_never_initialized_or_authenticated(make_loop, directory, gate, make_token):
    storage = make_token(kind=DeviceKind.STORAGE, name="thumb drive")
    directory.plug(storage)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.IGNORED
    assert storage.connect_calls == 0
    assert storage.read_sizes == []
    assert gate.calls == 0
    assert loop.stats.sessions == 0


def test_identity_mismatch_skips_authentication(make_loop, directory, gate, make_token):
    channel = make_token(device_id="wrong_id")
    directory.plug(channel)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.REJECTED_IDENTITY
    assert gate.calls == 0
    assert channel.read_sizes == []
    assert channel.disconnect_calls == 1
    assert loop.stats.rejected == 1


def test_connect_failure_returns_to_waiting(make_loop, directory, make_token):
    channel = make_token()
    channel.fail_connect = DeviceError("busy")
    directory.plug(channel)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.REJECTED_IDENTITY
    assert loop.state is SessionState.WAITING_FOR_DEVICE


def test_bad_key_data_is_rejected(make_loop, directory, dispatcher, make_token):
    channel = make_token(data=b"forged", commands=["LOCK_SCREEN"])
    directory.plug(channel)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.REJECTED_AUTH
    assert dispatcher.commands == []
    assert channel.disconnect_calls == 1


def test_authenticated_session_dispatches_commands(make_loop, directory, dispatcher, make_token):
    channel = make_token(commands=["LOCK_SCREEN", "CHECK_STATUS"])
    directory.plug(channel)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.ENDED
    assert dispatcher.commands == ["LOCK_SCREEN", "CHECK_STATUS"]
    assert loop.stats.authenticated == 1
    assert loop.stats.commands_ok == 2
    assert [r.output for r in loop.recent] == ["did LOCK_SCREEN", "did CHECK_STATUS"]
    assert channel.disconnect_calls == 1
    assert not channel.connected


def test_bad_command_does_not_end_session(make_loop, directory, make_token):
    dispatcher = FakeDispatcher(failing={"DELETE_ALL"})
    directory.plug(make_token(commands=["DELETE_ALL", "LOCK_USB"]))
    loop = make_loop(dispatcher=dispatcher)

    assert loop.run_session() is SessionOutcome.ENDED
    assert dispatcher.commands == ["DELETE_ALL", "LOCK_USB"]
    assert loop.stats.commands_failed == 1
    assert loop.stats.commands_ok == 1
    assert loop.recent[0].ok is False


def test_commands_are_strictly_sequential(make_loop, directory, make_token):
    channel = make_token(commands=["LOCK_SCREEN", "LOCK_USB", "UNLOCK_USB"])
    pending_at_dispatch = []
    dispatcher = FakeDispatcher(on_command=lambda cmd: pending_at_dispatch.append(channel.commands.qsize()))
    directory.plug(channel)
    loop = make_loop(dispatcher=dispatcher)

    loop.run_session()

    # The next command is still queued on the device while the current one runs
    assert pending_at_dispatch == [2, 1, 0]


def test_device_error_while_waiting_ends_session(make_loop, directory, dispatcher, make_token):
    channel = make_token(commands=["LOCK_SCREEN", DeviceError("unplugged"), "LOCK_USB"])
    directory.plug(channel)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.ENDED
    assert dispatcher.commands == ["LOCK_SCREEN"]
    assert channel.disconnect_calls == 1


def test_disconnect_error_is_logged_not_raised(make_loop, directory, make_token):
    channel = make_token()
    channel.fail_disconnect = DeviceError("already gone")
    directory.plug(channel)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.ENDED
    assert loop.state is SessionState.WAITING_FOR_DEVICE


def test_command_timeout_walks_back_to_waiting(make_loop, directory, make_token):
    uiq = queue.Queue()
    directory.plug(make_token())
    loop = make_loop(ui_queue=uiq)

    assert loop.run_session() is SessionOutcome.ENDED
    assert _states(uiq) == [
        SessionState.WAITING_FOR_DEVICE,
        SessionState.INITIALIZING,
        SessionState.AUTHENTICATING,
        SessionState.COMMAND_LOOP,
        SessionState.DISCONNECTING,
        SessionState.WAITING_FOR_DEVICE,
    ]


def test_next_session_reauthenticates_from_scratch(make_loop, directory, gate, dispatcher, make_token):
    channel = make_token(commands=["LOCK_SCREEN"])
    directory.plug(channel)
    loop = make_loop()
    assert loop.run_session() is SessionOutcome.ENDED

    # Same token presented again, content no longer valid
    channel.data = b"tampered"
    channel.push_command("UNLOCK_USB")
    directory.plug(channel)

    assert loop.run_session() is SessionOutcome.REJECTED_AUTH
    assert channel.connect_calls == 2
    assert len(channel.read_sizes) == 2
    assert gate.calls == 2
    assert dispatcher.commands == ["LOCK_SCREEN"]


def test_run_until_stopped(make_loop, directory, make_token):
    directory.plug(make_token(commands=["LOCK_SCREEN", "LOCK_USB"]))
    holder = {}
    dispatcher = FakeDispatcher(on_command=lambda cmd: holder["loop"].stop())
    loop = make_loop(dispatcher=dispatcher)
    holder["loop"] = loop

    loop.run()

    assert loop.stopped
    assert dispatcher.commands == ["LOCK_SCREEN"]
    assert loop.state is SessionState.IDLE


def test_unexpected_error_does_not_kill_run(monkeypatch, make_loop, directory, make_token):
    monkeypatch.setattr(loop_module, "ERROR_BACKOFF_S", 0)
    directory.fail_next_wait(RuntimeError("bug"))
    directory.plug(make_token(commands=["LOCK_SCREEN"]))
    holder = {}
    dispatcher = FakeDispatcher(on_command=lambda cmd: holder["loop"].stop())
    loop = make_loop(dispatcher=dispatcher)
    holder["loop"] = loop

    loop.run()
    assert dispatcher.commands == ["LOCK_SCREEN"]


def test_dispatch_events_are_posted(make_loop, directory, make_token):
    uiq = queue.Queue()
    directory.plug(make_token(commands=["LOCK_SCREEN"]))
    make_loop(ui_queue=uiq).run_session()

    events = []
    while not uiq.empty():
        events.append(uiq.get_nowait())
    results = [e[1] for e in events if e[0] == 'command']
    assert len(results) == 1
    assert results[0].command == "LOCK_SCREEN"
    assert results[0].ok
    assert any(e[0] == 'log' for e in events)


def test_unexpected_channel_error_still_releases_token(make_loop, directory, make_token):
    channel = make_token(commands=[OSError("hid gone")])
    directory.plug(channel)
    loop = make_loop()

    with pytest.raises(OSError):
        loop.run_session()

    assert channel.disconnect_calls == 1
    assert not channel.connected
    assert loop.state is SessionState.WAITING_FOR_DEVICE


def test_unexpected_dispatcher_error_still_releases_token(make_loop, directory, make_token):
    def _boom(command):
        raise ValueError("bad dispatcher")

    channel = make_token(commands=["LOCK_SCREEN"])
    directory.plug(channel)
    loop = make_loop(dispatcher=FakeDispatcher(on_command=_boom))

    with pytest.raises(ValueError):
        loop.run_session()

    assert channel.disconnect_calls == 1
    assert not channel.connected


def test_rejected_token_is_released_once(make_loop, directory, make_token):
    channel = make_token(data=b"wrong")
    directory.plug(channel)
    loop = make_loop()

    assert loop.run_session() is SessionOutcome.REJECTED_AUTH
    assert channel.disconnect_calls == 1
    assert not channel.connected
