"""Host environment probe: platform, shell and home directory."""

import os
import platform
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen = True)
class EnvironmentInfo:
    """Static facts about the host that tools and prompts depend on."""

    platform: str
    shell: str
    home: str
    arch: str = ""

    @property
    def is_windows(self) -> bool:
        return self.platform == "win32"

    def describe(self) -> str:
        """One-line description used in system prompts."""
        return f"Platform: {self.platform} ({self.arch}), shell: {self.shell}"


def detect_shell(platform_name: Optional[str] = None) -> str:
    """
    Pick the shell used to run commands.

    Parameters:
        platform_name: sys.platform style name, defaults to the running host.
    """
    platform_name = platform_name or sys.platform
    if platform_name == "win32":
        for candidate in ("pwsh", "powershell"):
            found = shutil.which(candidate)
            if found:
                return found
        return os.environ.get("COMSPEC") or "cmd.exe"

    configured = os.environ.get("SHELL")
    if configured and os.path.exists(configured):
        return configured
    if platform_name == "darwin":
        return "/bin/zsh"
    return shutil.which("bash") or "/bin/sh"


def get_environment_info() -> EnvironmentInfo:
    """Probe the running host."""
    return EnvironmentInfo(
        platform = sys.platform,
        shell = detect_shell(),
        home = str(Path.home()),
        arch = platform.machine(),
    )
