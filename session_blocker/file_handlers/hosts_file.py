#!/usr/bin/env python3
import os
import re
import logging
import tempfile
import contextlib
from typing import Iterable, Tuple

from session_blocker.core.errors import EditError
from session_blocker.core.state import ordered_unique
from session_blocker.security.privileged import PrivilegedRunner
from session_blocker.utils.config import BlockerConfig


def _region_pattern(marker_start: str, marker_end: str):
    return re.compile(
        rf"^[ \t]*{re.escape(marker_start)}[ \t]*\n[\s\S]*?^[ \t]*{re.escape(marker_end)}[ \t]*(?:\n|$)",
        re.MULTILINE,
    )


def _marker_line_pattern(marker_start: str, marker_end: str):
    return re.compile(
        rf"^[ \t]*(?:{re.escape(marker_start)}|{re.escape(marker_end)})[ \t]*(?:\n|$)", re.MULTILINE)


def strip_managed_region(content: str, marker_start: str, marker_end: str) -> Tuple[str, bool]:
    """Remove every managed region (start marker through end marker, inclusive).

    Returns the content untouched and False when no marker is present. When a
    region is removed, runs of blank lines are collapsed to one and the text
    ends with a single newline.
    """
    new_content, removed = _region_pattern(marker_start, marker_end).subn("", content)

    # A marker without its partner means someone hand-edited the block; drop only the marker line.
    new_content, orphans = _marker_line_pattern(marker_start, marker_end).subn("", new_content)
    if orphans:
        logging.warning(f"Removed {orphans} unpaired block marker line(s) from hosts content")

    if not removed and not orphans:
        return content, False

    new_content = re.sub(r"\n{3,}", "\n\n", new_content).rstrip()
    return (new_content + "\n" if new_content else ""), True


def build_managed_region(domains: Iterable[str], marker_start: str, marker_end: str,
                         address: str = "127.0.0.1") -> str:
    lines = [marker_start]
    lines.extend(f"{address} {domain}" for domain in domains)
    lines.append(marker_end)
    return "\n".join(lines) + "\n"


def compose_hosts(content: str, domains: Iterable[str], marker_start: str, marker_end: str,
                  address: str = "127.0.0.1") -> str:
    """Existing content minus any old region, one blank line, then the fresh region."""
    cleaned, _ = strip_managed_region(content, marker_start, marker_end)
    base = cleaned.rstrip()
    region = build_managed_region(domains, marker_start, marker_end, address)
    return f"{base}\n\n{region}" if base else region


class HostsFileHandler:
    def __init__(self, config: BlockerConfig, runner: PrivilegedRunner):
        self.config = config
        self.runner = runner
        self.hosts_path = config.hosts_path
        self.marker_start = config.marker_start
        self.marker_end = config.marker_end

    def read_hosts(self) -> str:
        try:
            with open(self.hosts_path, "r", encoding="utf-8") as f:
                return f.read()
        except UnicodeDecodeError as e:
            logging.error(f"Hosts file {self.hosts_path} is not valid UTF-8: {e}")
            raise EditError("Hosts file is not valid UTF-8", operation="read", path=self.hosts_path) from e
        except OSError as e:
            logging.error(f"Failed to read hosts file {self.hosts_path}: {e}")
            raise EditError(f"Failed to read hosts file: {e.strerror or e}", operation="read",
                            path=self.hosts_path) from e

    def has_managed_region(self, content=None) -> bool:
        if content is None:
            content = self.read_hosts()
        return _marker_line_pattern(self.marker_start, self.marker_end).search(content) is not None

    def apply(self, domains: Iterable[str]) -> None:
        """Point every domain at loopback, replacing whatever region was there before."""
        domains = ordered_unique(domains)
        if not domains:
            self.clear()
            return

        current = self.read_hosts()
        updated = compose_hosts(current, domains, self.marker_start, self.marker_end,
                                self.config.loopback_address)
        self._write_hosts(updated, operation="apply")
        logging.info(f"Blocked {len(domains)} domain(s) in {self.hosts_path}")

    def clear(self) -> bool:
        """Strip the managed region. Returns False if there was nothing to remove."""
        current = self.read_hosts()
        cleaned, removed = strip_managed_region(current, self.marker_start, self.marker_end)
        if not removed:
            logging.debug(f"No managed block in {self.hosts_path}; nothing to clear")
            return False
        self._write_hosts(cleaned, operation="clear")
        logging.info(f"Removed domain blocks from {self.hosts_path}")
        return True

    def _write_hosts(self, content: str, operation: str) -> None:
        """Stage the full new file privately, then install it in one privileged step."""
        staged = None
        try:
            self.config.ensure_state_dir()
            fd, staged = tempfile.mkstemp(prefix="hosts-", suffix=".staged", dir=self.config.staging_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            self.runner.install_file(staged)
        except (OSError, RuntimeError) as e:
            logging.error(f"Failed to {operation} hosts file {self.hosts_path}: {e}")
            raise EditError(f"Failed to write hosts file: {e}", operation=operation,
                            path=self.hosts_path) from e
        finally:
            if staged:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(staged)

        self.runner.flush_dns_cache()
