"""
Settings file handling.

Everything the service needs is read once at startup from an INI file and
frozen into a GuardianConfig. Nothing security relevant is compiled in:
the expected key digest, key id and script root all come from here.
"""

from __future__ import annotations

import configparser
import os
import string
from dataclasses import dataclass
from typing import Optional

from guardian.errors import ConfigError

DEFAULT_SETTINGS_PATH = "settings.ini"

DEFAULT_SCRIPT_DIR     = "./response"
DEFAULT_DEVICE_TIMEOUT = 60.0
DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_VID            = 0xCAFE
DEFAULT_REPORT_ID      = 0
DEFAULT_SCAN_INTERVAL  = 1.0
DEFAULT_LOG_PATH       = "guardian.log"

BACKENDS = ("hid", "placeholder")

SHA256_HEX_LENGTH = 64


@dataclass(frozen=True)
class GuardianConfig:
    expected_key_hash: str
    key_id: str
    script_directory: str = DEFAULT_SCRIPT_DIR
    device_timeout: float = DEFAULT_DEVICE_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT

    backend: str = "hid"
    vid: Optional[int] = DEFAULT_VID
    pid: Optional[int] = None
    report_id: int = DEFAULT_REPORT_ID
    scan_interval: float = DEFAULT_SCAN_INTERVAL

    log_enabled: bool = True
    log_path: str = DEFAULT_LOG_PATH
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        validate_key_hash(self.expected_key_hash)
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "expected_key_hash", self.expected_key_hash.strip().lower())

        if not self.key_id:
            raise ConfigError("KEY_ID must not be empty")
        if self.device_timeout <= 0 or self.command_timeout <= 0:
            raise ConfigError("DEVICE_TIMEOUT and COMMAND_TIMEOUT must be positive")
        if self.scan_interval <= 0:
            raise ConfigError("SCAN_INTERVAL must be positive")
        if self.backend not in BACKENDS:
            raise ConfigError(f"BACKEND must be one of {', '.join(BACKENDS)}, got {self.backend!r}")
        if not 0 <= self.report_id <= 0xFF:
            raise ConfigError(f"REPORT_ID must fit in one byte, got {self.report_id}")


def validate_key_hash(value: str) -> None:
    """Expected digest must be a SHA-256 hex string."""
    value = (value or "").strip()
    if len(value) != SHA256_HEX_LENGTH:
        raise ConfigError(
            f"EXPECTED_KEY_HASH must be {SHA256_HEX_LENGTH} hex characters, got {len(value)}"
        )
    if any(c not in string.hexdigits for c in value):
        raise ConfigError("EXPECTED_KEY_HASH must be a hex string")


def write_default_settings(path: str) -> None:
    """Create a settings file with defaults and an empty key section."""
    config = configparser.ConfigParser()
    config.optionxform = str  # keep upper-case keys readable in the file
    config['GUARDIAN'] = {
        'EXPECTED_KEY_HASH': '',
        'KEY_ID': '',
        'SCRIPT_DIR': DEFAULT_SCRIPT_DIR,
        'DEVICE_TIMEOUT': str(int(DEFAULT_DEVICE_TIMEOUT)),
        'COMMAND_TIMEOUT': str(int(DEFAULT_COMMAND_TIMEOUT)),
    }
    config['USB'] = {
        'BACKEND': 'hid',
        'VID': f'0x{DEFAULT_VID:04X}',
        'PID': '',
        'REPORT_ID': str(DEFAULT_REPORT_ID),
        'SCAN_INTERVAL': str(DEFAULT_SCAN_INTERVAL),
    }
    config['LOG'] = {
        'ENABLED': 'true',
        'PATH': DEFAULT_LOG_PATH,
        'LEVEL': 'INFO',
    }
    with open(path, 'w') as f:
        config.write(f)


def get_int(config: configparser.ConfigParser, section: str, key: str,
             fallback: Optional[int]) -> Optional[int]:
    raw = config.get(section, key, fallback='').strip()
    if not raw:
        return fallback
    try:
        return int(raw, 0)
    except ValueError:
        raise ConfigError(f"[{section}] {key} must be an integer, got {raw!r}") from None


def get_float(config: configparser.ConfigParser, section: str, key: str,
               fallback: float) -> float:
    raw = config.get(section, key, fallback='').strip()
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"[{section}] {key} must be a number of seconds, got {raw!r}") from None


def read_settings(path: str = DEFAULT_SETTINGS_PATH) -> configparser.ConfigParser:
    """Read the INI file, writing a default one first if it does not exist."""
    if not os.path.isfile(path):
        write_default_settings(path)

    config = configparser.ConfigParser()
    config.read(path)
    return config


def load_config(path: str = DEFAULT_SETTINGS_PATH) -> GuardianConfig:
    """Read and validate settings. Raises ConfigError on any problem."""
    config = read_settings(path)

    if 'GUARDIAN' not in config:
        raise ConfigError(f"{path}: missing [GUARDIAN] section")

    try:
        log_enabled = config.getboolean('LOG', 'ENABLED', fallback=True)
    except ValueError:
        raise ConfigError("[LOG] ENABLED must be a boolean") from None

    script_dir = config.get('GUARDIAN', 'SCRIPT_DIR', fallback=DEFAULT_SCRIPT_DIR).strip()

    return GuardianConfig(
        expected_key_hash=config.get('GUARDIAN', 'EXPECTED_KEY_HASH', fallback=''),
        key_id=config.get('GUARDIAN', 'KEY_ID', fallback='').strip(),
        script_directory=script_dir or DEFAULT_SCRIPT_DIR,
        device_timeout=get_float(config, 'GUARDIAN', 'DEVICE_TIMEOUT', DEFAULT_DEVICE_TIMEOUT),
        command_timeout=get_float(config, 'GUARDIAN', 'COMMAND_TIMEOUT', DEFAULT_COMMAND_TIMEOUT),
        backend=config.get('USB', 'BACKEND', fallback='hid').strip().lower(),
        vid=get_int(config, 'USB', 'VID', DEFAULT_VID),
        pid=get_int(config, 'USB', 'PID', None),
        report_id=get_int(config, 'USB', 'REPORT_ID', DEFAULT_REPORT_ID),
        scan_interval=get_float(config, 'USB', 'SCAN_INTERVAL', DEFAULT_SCAN_INTERVAL),
        log_enabled=log_enabled,
        log_path=config.get('LOG', 'PATH', fallback=DEFAULT_LOG_PATH).strip() or DEFAULT_LOG_PATH,
        log_level=config.get('LOG', 'LEVEL', fallback='INFO').strip() or 'INFO',
    )
