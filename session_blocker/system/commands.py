#!/usr/bin/env python3
import shlex
import logging
import subprocess
from typing import Optional, Sequence


class CommandError(RuntimeError):
    """An external command exited non-zero or did not finish in time."""

    def __init__(self, cmd, returncode=None, stdout="", stderr="", timed_out=False):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.timed_out = timed_out
        if timed_out:
            message = f"Command timed out: {shlex.join(self.cmd)}"
        else:
            message = (f"Command failed ({returncode}): {shlex.join(self.cmd)}\n"
                       f"STDOUT:\n{self.stdout}\nSTDERR:\n{self.stderr}")
        super().__init__(message)


class SystemCommands:
    """Runs external programs. Everything that shells out goes through here so
    tests can swap in a fake."""

    def run(self, cmd: Sequence[str], check: bool = True, timeout: Optional[float] = None,
            input: Optional[str] = None) -> subprocess.CompletedProcess:
        """Run a command and return the CompletedProcess. Raise on failure if check is True."""
        logging.debug(f"Running: {shlex.join(cmd)}")
        try:
            result = subprocess.run(list(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                    text=True, timeout=timeout, input=input)
        except subprocess.TimeoutExpired as e:
            raise CommandError(cmd, timed_out=True) from e
        except FileNotFoundError as e:
            raise CommandError(cmd, returncode=127, stderr=str(e)) from e
        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stdout, result.stderr)
        return result
