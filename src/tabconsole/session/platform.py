"""Platform detection for the shell that backs each tab."""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass, field

WELCOME_TITLE = "Server Management Console"


@dataclass(frozen=True)
class ShellCommand:
    """Program and arguments used to spawn a tab's shell."""

    program: str
    args: tuple[str, ...] = field(default_factory=tuple)
    name: str = "sh"
    prompt: str = "$ "

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


def default_shell(platform: str | None = None) -> ShellCommand:
    """Pick the shell for the current platform.

    PowerShell reads commands from stdin on Windows, zsh is the macOS
    default, and everything else gets bash (or plain sh when bash is not
    installed).
    """
    platform = platform or sys.platform
    if platform.startswith("win"):
        return ShellCommand(
            program="powershell.exe",
            args=("-NoProfile", "-Command", "-"),
            name="PowerShell",
            prompt="PS> ",
        )
    if platform == "darwin":
        return ShellCommand(program="/bin/zsh", name="zsh")
    bash = "/bin/bash" if os.path.exists("/bin/bash") else shutil.which("bash")
    if bash:
        return ShellCommand(program=bash, name="bash")
    return ShellCommand(program="/bin/sh", name="sh")


def welcome_message(tab_id: str, shell: ShellCommand, cwd: str) -> str:
    """Greeting shown at the top of a freshly spawned tab."""
    return f"{WELCOME_TITLE} - Tab: {tab_id}\n{shell.name} {cwd}\n{shell.prompt}"
