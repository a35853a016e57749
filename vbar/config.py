"""Runtime configuration for vbar, resolved from the environment."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

SOCKET_ENV = "VBAR_SOCKET"
CONFIG_ENV = "VBAR_CONFIG"
MENU_COMMAND_ENV = "VBAR_MENU_COMMAND"

DEFAULT_SHELL = "/bin/bash"
DEFAULT_ERROR_TEXT = "ERROR"
DEFAULT_MENU_COMMAND = "rofi -dmenu -i -p vbar"


def get_default_socket_path() -> Path:
    """Get the control socket path.

    $VBAR_SOCKET wins, then $XDG_RUNTIME_DIR/vbar/ipc.sock.
    """
    override = os.environ.get(SOCKET_ENV)
    if override:
        return Path(override)

    runtime_dir = os.environ.get("XDG_RUNTIME_DIR") or f"/run/user/{os.getuid()}"
    return Path(runtime_dir) / "vbar" / "ipc.sock"


def get_config_script_path() -> Path:
    """Get the user configuration script executed at startup."""
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(override)

    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "vbar" / "vbarrc"


@dataclass
class Settings:
    """Complete bar configuration."""

    socket_path: Path = field(default_factory=get_default_socket_path)
    config_script: Optional[Path] = field(default_factory=get_config_script_path)
    shell: str = DEFAULT_SHELL
    error_text: str = DEFAULT_ERROR_TEXT
    menu_command: str = DEFAULT_MENU_COMMAND
    probe_timeout: float = 1.0

    @property
    def pid_path(self) -> Path:
        """Pid file kept next to the socket."""
        return self.socket_path.with_suffix(".pid")

    @classmethod
    def from_env(cls, socket_path: Optional[Path] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            socket_path: Explicit socket path (e.g. from --socket)
        """
        settings = cls(
            menu_command=os.environ.get(MENU_COMMAND_ENV) or DEFAULT_MENU_COMMAND,
        )
        if socket_path is not None:
            settings.socket_path = socket_path
        return settings
