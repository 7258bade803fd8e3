#!/usr/bin/env python3
"""
OS-specific capabilities used by the blocker.

Process listing and termination go through psutil and are shared by every
platform. Elevation, DNS cache flushing and desktop notifications differ per
OS and are implemented by the subclasses below.
"""

from __future__ import annotations

import shlex
import getpass
import platform
import dataclasses
from typing import List, Optional

import psutil

from session_blocker.system.commands import CommandError, SystemCommands


@dataclasses.dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cmdline: str

    def matches(self, app_name: str) -> bool:
        """Case-insensitive substring match against the process name and command line."""
        needle = app_name.lower()
        return needle in self.name.lower() or needle in self.cmdline.lower()


class PlatformCapabilities:
    name = "generic"
    admin_group = "root"

    def __init__(self, commands: Optional[SystemCommands] = None, kill_grace_period: float = 3.0):
        self.commands = commands or SystemCommands()
        self.kill_grace_period = kill_grace_period

    # ---------- processes ----------

    def list_processes(self) -> List[ProcessInfo]:
        snapshot = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            try:
                info = proc.info
                cmdline = " ".join(info.get("cmdline") or [])
                snapshot.append(ProcessInfo(info["pid"], info.get("name") or "", cmdline))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return snapshot

    def terminate(self, pid: int) -> bool:
        """Terminate a process, escalating to kill after the grace period.

        Returns False when the process was already gone or could not be touched.
        """
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            try:
                proc.wait(timeout=self.kill_grace_period)
            except psutil.TimeoutExpired:
                proc.kill()
            return True
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return False

    # ---------- privileged / OS specific ----------

    def elevate(self, shell_command: str, timeout: Optional[float] = None) -> None:
        """Run a shell command as root behind the OS's interactive prompt."""
        raise NotImplementedError

    def dns_flush_shell(self) -> List[str]:
        """Shell lines that flush the resolver cache when run as root."""
        return []

    def flush_dns_cache(self) -> None:
        raise NotImplementedError

    def notify(self, title: str, body: str, urgency: str = "normal") -> None:
        raise NotImplementedError


class MacOSPlatform(PlatformCapabilities):
    name = "darwin"
    admin_group = "wheel"

    @staticmethod
    def _applescript_string(text: str) -> str:
        return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'

    def elevate(self, shell_command, timeout=None):
        script = f"do shell script {self._applescript_string(shell_command)} with administrator privileges"
        self.commands.run(["/usr/bin/osascript", "-e", script], timeout=timeout)

    def dns_flush_shell(self):
        return [
            "dscacheutil -flushcache 2>/dev/null || true",
            "killall -HUP mDNSResponder 2>/dev/null || true",
        ]

    def flush_dns_cache(self):
        # mDNSResponder only accepts HUP from root; dscacheutil works unprivileged.
        self.commands.run(["/usr/bin/dscacheutil", "-flushcache"])

    def notify(self, title, body, urgency="normal"):
        script = f"display notification {self._applescript_string(body)} with title {self._applescript_string(title)}"
        if urgency == "critical":
            script += ' sound name "Basso"'
        self.commands.run(["/usr/bin/osascript", "-e", script], check=False)


class LinuxPlatform(PlatformCapabilities):
    name = "linux"
    admin_group = "root"

    def elevate(self, shell_command, timeout=None):
        self.commands.run(["pkexec", "/bin/sh", "-c", shell_command], timeout=timeout)

    def dns_flush_shell(self):
        return [
            "resolvectl flush-caches 2>/dev/null "
            "|| systemd-resolve --flush-caches 2>/dev/null "
            "|| nscd -i hosts 2>/dev/null || true",
        ]

    def flush_dns_cache(self):
        candidates = [
            ["resolvectl", "flush-caches"],
            ["systemd-resolve", "--flush-caches"],
            ["nscd", "-i", "hosts"],
        ]
        last_error = None
        for cmd in candidates:
            try:
                self.commands.run(cmd)
                return
            except CommandError as e:
                last_error = f"{shlex.join(cmd)} exited {e.returncode}: {e.stderr.strip()}"
        raise RuntimeError(f"No DNS cache flush command succeeded ({last_error})")

    def notify(self, title, body, urgency="normal"):
        self.commands.run(["notify-send", "-u", urgency, "-a", "session-blocker", title, body], check=False)


def detect_platform(commands: Optional[SystemCommands] = None, kill_grace_period: float = 3.0) -> PlatformCapabilities:
    system = platform.system()
    if system == "Darwin":
        return MacOSPlatform(commands, kill_grace_period)
    if system == "Linux":
        return LinuxPlatform(commands, kill_grace_period)
    raise NotImplementedError(f"Blocking is not supported on this system ({system})")


def current_username() -> str:
    return getpass.getuser()
