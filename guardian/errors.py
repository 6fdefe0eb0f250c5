"""
Error taxonomy for the guardian service.

Device and timeout errors are recoverable control signals for the loop.
Token, authentication and dispatch errors abort a session or a single
command. Only ConfigError is fatal, and only at startup.
"""

from __future__ import annotations


class GuardianError(Exception):
    """Base class for every error raised by the guardian."""


class ConfigError(GuardianError):
    """Invalid or missing settings."""


# ══════════════════════════════════════════════════════════════════════════════
# DEVICE LAYER
# ══════════════════════════════════════════════════════════════════════════════

class DeviceError(GuardianError):
    """Connect, disconnect or I/O failure on a device channel."""


class DeviceTimeout(DeviceError):
    """No device or no command arrived before the deadline."""


class DeviceNotFound(DeviceError):
    """Requested device id is not present."""


# ══════════════════════════════════════════════════════════════════════════════
# TOKEN / AUTHENTICATION
# ══════════════════════════════════════════════════════════════════════════════

class TokenError(GuardianError):
    """The discovered device cannot be used as the configured token."""


class WrongDeviceType(TokenError):
    pass


class IdentityMismatch(TokenError):
    pass


class AuthenticationError(GuardianError):
    """Token content did not match. Never carries the reason."""

    def __init__(self) -> None:
        super().__init__("authentication failed")


# ══════════════════════════════════════════════════════════════════════════════
# COMMAND DISPATCH
# ══════════════════════════════════════════════════════════════════════════════

class DispatchError(GuardianError):
    """A single command could not be carried out."""


class UnknownCommandError(DispatchError):
    pass


class ScriptExecutionError(DispatchError):
    pass


class StatusCheckError(DispatchError):
    pass
