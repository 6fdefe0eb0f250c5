"""
Command dispatcher.

Maps an authenticated command string to an external action and reports
the outcome. Script actions live under

    <script_directory>/<nix|win>/<code><.sh|.bat>

and are run to completion before the call returns.
"""

from __future__ import annotations

import os
import subprocess
import sys
from typing import Dict, List, Optional, Sequence

from guardian.errors import ScriptExecutionError, StatusCheckError, UnknownCommandError

IS_WINDOWS = (os.name == 'nt') or sys.platform.startswith('win')

# Command -> script code
SCRIPT_COMMANDS: Dict[str, str] = {
    "ALLOW_NETWORK": "an",
    "BLOCK_NETWORK": "bn",
    "LOCK_SCREEN":   "sl",
    "LOCK_USB":      "lu",
    "UNLOCK_USB":    "uu",
}
STATUS_COMMAND = "CHECK_STATUS"

COMMANDS = tuple(SCRIPT_COMMANDS) + (STATUS_COMMAND,)

# Hide the console window for cmd.exe children
CREATE_NO_WINDOW = 0x08000000


def _decode(data: Optional[bytes]) -> str:
    return (data or b"").decode("utf-8", errors="replace")


class CommandDispatcher:
    """Stateless: every call resolves a fresh script path."""

    def __init__(self, script_directory: str, windows: Optional[bool] = None):
        self.script_directory = script_directory
        self.windows = IS_WINDOWS if windows is None else windows

    @property
    def platform_dir(self) -> str:
        return os.path.join(self.script_directory, "win" if self.windows else "nix")

    @property
    def script_ext(self) -> str:
        return ".bat" if self.windows else ".sh"

    def script_path(self, code: str) -> str:
        return os.path.join(self.platform_dir, code + self.script_ext)

    def handle_command(self, command: str) -> str:
        """Run the action for ``command`` and return its standard output."""
        code = SCRIPT_COMMANDS.get(command)
        if code is not None:
            return self.run_script(code)
        if command == STATUS_COMMAND:
            return self.check_status()
        raise UnknownCommandError(f"Unknown command: {command!r}")

    def _shell_args(self, script_path: str) -> List[str]:
        if self.windows:
            return ["cmd", "/C", script_path]
        return ["bash", "-c", script_path]

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        kwargs = {}
        if self.windows:
            kwargs["creationflags"] = CREATE_NO_WINDOW
        return subprocess.run(
            list(args),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
            **kwargs,
        )

    def run_script(self, code: str) -> str:
        script_path = self.script_path(code)
        try:
            result = self._run(self._shell_args(script_path))
        except OSError as e:
            raise ScriptExecutionError(f"Script execution failed: {code}\nError: {e}") from e

        if result.returncode == 0:
            return _decode(result.stdout)

        raise ScriptExecutionError(
            f"Script execution failed: {code} (exit {result.returncode})\n"
            f"Error: {_decode(result.stderr)}"
        )

    def check_status(self) -> str:
        """List running processes with the platform's own tool."""
        args = ["tasklist"] if self.windows else ["ps", "aux"]
        try:
            result = self._run(args)
        except OSError as e:
            raise StatusCheckError(f"Status check failed: {e}") from e

        if result.returncode != 0:
            raise StatusCheckError(f"Status check failed: {_decode(result.stderr)}")
        return _decode(result.stdout)

    def script_exists(self, code: str) -> bool:
        return os.path.exists(self.script_path(code))

    def missing_scripts(self) -> List[str]:
        """Paths of dispatch scripts that are not on disk, for pre-flight checks."""
        return [
            self.script_path(code)
            for code in SCRIPT_COMMANDS.values()
            if not self.script_exists(code)
        ]
