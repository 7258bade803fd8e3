#!/usr/bin/env python3
import os
import shlex
import logging
from typing import Optional

from session_blocker.core.state import BlockerState
from session_blocker.system.commands import SystemCommands
from session_blocker.system.platforms import PlatformCapabilities
from session_blocker.utils.config import BlockerConfig


class PrivilegedRunner:
    """Performs the root-only steps of a hosts edit.

    Goes through the installed helper (`sudo -n`, never prompts) once the
    bootstrap has succeeded, and through the platform's interactive elevation
    otherwise.
    """

    def __init__(self, config: BlockerConfig, state: BlockerState, platform: PlatformCapabilities,
                 commands: Optional[SystemCommands] = None):
        self.config = config
        self.state = state
        self.platform = platform
        self.commands = commands or platform.commands

    def _helper_usable(self) -> bool:
        if not self.state.privilege_ready:
            return False
        if not os.path.isfile(self.config.helper_path):
            logging.warning(f"Privileged helper {self.config.helper_path} disappeared; "
                            f"falling back to interactive elevation")
            self.state.privilege_ready = False
            return False
        return True

    def install_file(self, staged_path: str) -> None:
        """Replace the hosts file with the staged copy in one privileged step."""
        if self._helper_usable():
            with open(staged_path, "r", encoding="utf-8") as f:
                content = f.read()
            self.commands.run(["sudo", "-n", self.config.helper_path, "install"],
                              input=content, timeout=self.config.command_timeout)
            return

        q = shlex.quote
        target = self.config.hosts_path
        next_path = f"{target}.session-blocker.new"
        command = " && ".join([
            f"cp {q(staged_path)} {q(next_path)}",
            f"chmod 644 {q(next_path)}",
            f"chown root:{self.platform.admin_group} {q(next_path)}",
            f"mv -f {q(next_path)} {q(target)}",
        ])
        flush = self.platform.dns_flush_shell()
        if flush:
            # Fold the flush into the same prompt; its failure must not fail the install.
            command = f"{command} && {{ {'; '.join(flush)}; true; }}"
        self.platform.elevate(command, timeout=self.config.elevation_timeout)

    def flush_dns_cache(self) -> None:
        """Best-effort resolver cache flush; failures are only logged."""
        try:
            if self._helper_usable():
                self.commands.run(["sudo", "-n", self.config.helper_path, "flush"],
                                  timeout=self.config.command_timeout)
            else:
                self.platform.flush_dns_cache()
        except (RuntimeError, OSError) as e:
            logging.warning(f"DNS cache flush failed (changes apply once the cache expires): {e}")
