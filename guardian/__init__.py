"""Token guardian: privileged local actions gated on a physical token."""

from guardian.auth import AuthenticationGate
from guardian.devices import DeviceDescriptor, DeviceKind, DiscoveredDevice
from guardian.dispatcher import CommandDispatcher
from guardian.loop import ControlLoop, SessionOutcome, SessionState
from guardian.settings import GuardianConfig, load_config
from guardian.token import IdentityToken

__version__ = "0.1.0"

__all__ = [
    "AuthenticationGate",
    "CommandDispatcher",
    "ControlLoop",
    "DeviceDescriptor",
    "DeviceKind",
    "DiscoveredDevice",
    "GuardianConfig",
    "IdentityToken",
    "SessionOutcome",
    "SessionState",
    "load_config",
]
