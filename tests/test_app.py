import hashlib
import os

import pytest

from guardian import app
from guardian.app import GuardianService, lock_path_for, parse_args
from guardian.loop import SessionState
from guardian.memory_backend import PlaceholderDeviceDirectory
from guardian.settings import GuardianConfig

from conftest import KEY_HASH


def _settings(tmp_path, backend="placeholder", script_dir=None):
    path = tmp_path / "settings.ini"
    path.write_text(
        "[GUARDIAN]\n"
        f"EXPECTED_KEY_HASH = {KEY_HASH}\n"
        "KEY_ID = test_key_id\n"
        f"SCRIPT_DIR = {script_dir or tmp_path / 'response'}\n"
        "[USB]\n"
        f"BACKEND = {backend}\n"
    )
    return str(path)


def test_hash_key_prints_digest_of_first_kilobyte(tmp_path, capsys):
    key_file = tmp_path / "key.bin"
    key_file.write_bytes(b"k" * 4096)

    assert app.main(["--hash-key", str(key_file)]) == 0
    out = capsys.readouterr().out.strip()
    assert out == hashlib.sha256(b"k" * 1024).hexdigest()


def test_list_devices_placeholder(tmp_path, capsys):
    assert app.main(["--settings", _settings(tmp_path), "--list-devices"]) == 0
    assert "No devices found." in capsys.readouterr().out


def test_check_scripts_reports_missing(tmp_path, capsys):
    assert app.main(["--settings", _settings(tmp_path), "--check-scripts"]) == 1
    assert capsys.readouterr().out.count("MISSING") == 5


def test_check_scripts_all_present(tmp_path, capsys):
    script_dir = tmp_path / "response"
    sub = script_dir / ("win" if os.name == "nt" else "nix")
    sub.mkdir(parents=True)
    ext = ".bat" if os.name == "nt" else ".sh"
    for code in ("an", "bn", "sl", "lu", "uu"):
        (sub / f"{code}{ext}").write_text("")

    assert app.main(["--settings", _settings(tmp_path, script_dir=script_dir), "--check-scripts"]) == 0


def test_invalid_settings_exit_code(tmp_path, capsys):
    path = tmp_path / "settings.ini"
    path.write_text("[GUARDIAN]\nEXPECTED_KEY_HASH = nope\nKEY_ID = k\n")

    assert app.main(["--settings", str(path), "--headless"]) == 2
    assert "ERROR" in capsys.readouterr().out


def test_parse_args_modes_are_exclusive():
    with pytest.raises(SystemExit):
        parse_args(["--list-devices", "--check-scripts"])
    assert parse_args(["--headless"]).headless
    assert not parse_args([]).headless


def test_console_is_not_an_alias_for_headless():
    with pytest.raises(SystemExit):
        parse_args(["--console"])


def test_hash_key_missing_file_reports_error(tmp_path, capsys):
    assert app.main(["--hash-key", str(tmp_path / "missing.bin")]) == 1
    assert capsys.readouterr().out.startswith("ERROR:")


def test_lock_lives_next_to_settings(tmp_path):
    settings = tmp_path / "conf" / "settings.ini"
    assert lock_path_for(str(settings)) == str(tmp_path / "conf" / "guardian.lock")


def test_instance_lock_acquire_release(tmp_path):
    lock = app.acquire_instance_lock(str(tmp_path / "guardian.lock"))
    assert lock.is_locked
    lock.release()
    assert not lock.is_locked


def test_service_wires_placeholder_backend(tmp_path):
    config = GuardianConfig(
        expected_key_hash=KEY_HASH,
        key_id="test_key_id",
        script_directory=str(tmp_path),
        device_timeout=0.01,
        command_timeout=0.01,
        backend="placeholder",
    )
    service = GuardianService(config, headless=True)
    assert isinstance(service.loop.directory, PlaceholderDeviceDirectory)

    service.start()
    service.stop()
    assert service.loop.stopped
    assert service.loop.state in (SessionState.IDLE, SessionState.WAITING_FOR_DEVICE)
