#!/usr/bin/env python3
"""
One-time privilege setup.

Installs a small root-owned helper that can only replace the hosts file and
flush the resolver cache, plus a sudoers fragment that lets the current user
run exactly that helper without a password. After this runs once, blocking
and unblocking never show an elevation prompt again.
"""

from __future__ import annotations

import os
import re
import shlex
import logging
import tempfile
import contextlib
from typing import Optional

from session_blocker.core.errors import BootstrapError
from session_blocker.core.state import BlockerState
from session_blocker.system.commands import CommandError
from session_blocker.system.platforms import PlatformCapabilities, current_username
from session_blocker.utils.config import BlockerConfig

# Absolute path built from plain path characters only: no globs, spaces or shell syntax.
SAFE_PATH = re.compile(r"^/[A-Za-z0-9._/-]+$")
SAFE_USERNAME = re.compile(r"^[A-Za-z0-9._][A-Za-z0-9._-]*$")

HELPER_TEMPLATE = """#!/bin/bash
# {app_name} hosts helper. Installed by session-blocker; do not edit.
# Reads the complete new hosts file on stdin and swaps it into place.
set -euo pipefail

HOSTS_PATH={hosts_path}
NEXT_PATH={next_path}

case "${{1:-}}" in
  install)
    trap 'rm -f "$NEXT_PATH"' EXIT
    cat > "$NEXT_PATH"
    if [ ! -s "$NEXT_PATH" ]; then
      echo "Refusing to install an empty hosts file" >&2
      exit 1
    fi
    chmod 644 "$NEXT_PATH"
    chown root:{admin_group} "$NEXT_PATH"
    mv -f "$NEXT_PATH" "$HOSTS_PATH"
    trap - EXIT
    ;;
  flush)
{flush_lines}
    ;;
  *)
    echo "Usage: {helper_name} {{install|flush}}" >&2
    exit 64
    ;;
esac
"""


class PrivilegeBootstrapper:
    def __init__(self, config: BlockerConfig, state: BlockerState, platform: PlatformCapabilities):
        self.config = config
        self.state = state
        self.platform = platform

    def is_installed(self) -> bool:
        """True when the helper exists and sudo lets us run it without a password."""
        if not os.path.isfile(self.config.helper_path):
            return False
        return self.rule_in_effect()

    def rule_in_effect(self) -> bool:
        # sudoers.d is usually 0750 root, so the fragment itself cannot be stat-ed; ask sudo.
        try:
            self.platform.commands.run(["sudo", "-n", "-l", self.config.helper_path],
                                       timeout=self.config.command_timeout)
        except CommandError as e:
            logging.debug(f"Passwordless rule for {self.config.helper_path} not in effect: {e}")
            return False
        return True

    def helper_script(self) -> str:
        flush_lines = "\n".join(f"    {line}" for line in self.platform.dns_flush_shell()) or "    true"
        return HELPER_TEMPLATE.format(
            app_name=self.config.app_name,
            hosts_path=shlex.quote(self.config.hosts_path),
            next_path=shlex.quote(f"{self.config.hosts_path}.session-blocker.new"),
            admin_group=self.platform.admin_group,
            helper_name=os.path.basename(self.config.helper_path),
            flush_lines=flush_lines,
        )

    def sudoers_rule(self, username: Optional[str] = None) -> str:
        """Authorization line naming the helper by its exact absolute path."""
        username = username or current_username()
        self._validate_paths()
        if not SAFE_USERNAME.match(username):
            raise BootstrapError(f"Refusing to write a sudoers rule for user {username!r}",
                                 operation="sudoers_rule", path=self.config.sudoers_path)
        return f"{username} ALL=(root) NOPASSWD: {self.config.helper_path}\n"

    def _validate_paths(self) -> None:
        for path in (self.config.helper_path, self.config.sudoers_path, self.config.hosts_path):
            if not SAFE_PATH.match(path) or ".." in path.split("/"):
                raise BootstrapError(f"Unsafe path for privileged setup: {path!r}",
                                     operation="validate", path=path)
        # sudo silently skips sudoers.d entries whose name contains a dot.
        if "." in os.path.basename(self.config.sudoers_path):
            raise BootstrapError("sudoers fragment name must not contain '.'",
                                 operation="validate", path=self.config.sudoers_path)

    def install_command(self, staged_helper: str, staged_rule: str) -> str:
        q = shlex.quote
        helper = q(self.config.helper_path)
        rule = q(self.config.sudoers_path)
        owner = f"root:{self.platform.admin_group}"
        steps = [
            f"visudo -cf {q(staged_rule)}",
            f"mkdir -p {q(os.path.dirname(self.config.helper_path))}",
            f"mkdir -p {q(os.path.dirname(self.config.sudoers_path))}",
            f"cp {q(staged_helper)} {helper}",
            f"chmod 755 {helper}",
            f"chown {owner} {helper}",
            f"cp {q(staged_rule)} {rule}",
            f"chmod 440 {rule}",
            f"chown {owner} {rule}",
        ]
        return " && ".join(steps)

    def ensure_bootstrapped(self) -> None:
        """Install the helper and sudoers rule unless both are already present.

        Raises BootstrapError if the user dismisses the prompt or the install
        fails; callers keep working through per-call elevation in that case.
        """
        if self.is_installed():
            self.state.privilege_ready = True
            logging.debug(f"Privileged helper already installed at {self.config.helper_path}")
            return

        rule = self.sudoers_rule()
        self.config.ensure_state_dir()
        staged = []
        try:
            staged_helper = self._stage(self.helper_script(), "helper-", 0o700)
            staged.append(staged_helper)
            staged_rule = self._stage(rule, "sudoers-", 0o600)
            staged.append(staged_rule)

            logging.info(f"Requesting one-time elevation to install {self.config.helper_path} "
                         f"and {self.config.sudoers_path}")
            self.platform.elevate(self.install_command(staged_helper, staged_rule),
                                  timeout=self.config.elevation_timeout)
        except CommandError as e:
            reason = "timed out waiting for elevation" if e.timed_out else "elevation denied or install failed"
            logging.error(f"Privileged setup failed: {reason}: {e}")
            raise BootstrapError(f"Privileged setup failed: {reason}", operation="install",
                                 path=self.config.helper_path) from e
        except OSError as e:
            logging.error(f"Failed to stage privileged setup files in {self.config.staging_dir}: {e}")
            raise BootstrapError(f"Failed to stage setup files: {e}", operation="stage",
                                 path=self.config.staging_dir) from e
        finally:
            for path in staged:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(path)

        if not self.is_installed():
            raise BootstrapError("Elevated install finished but the helper cannot be run without a password",
                                 operation="verify", path=self.config.helper_path)
        self.state.privilege_ready = True
        logging.info("Privileged helper installed; future blocking runs without a prompt")

    def _stage(self, content: str, prefix: str, mode: int) -> str:
        fd, path = tempfile.mkstemp(prefix=prefix, dir=self.config.staging_dir)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(path, mode)
        return path
