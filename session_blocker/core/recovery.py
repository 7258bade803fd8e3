#!/usr/bin/env python3
import logging

from session_blocker.core.errors import EditError, SweepError
from session_blocker.file_handlers.hosts_file import HostsFileHandler


class CrashRecoverySweep:
    """Removes a managed region left behind by a session that never stopped cleanly.

    Run once at startup. The in-memory state is always inactive then, so any
    region still in the hosts file belongs to a previous process.
    """

    def __init__(self, hosts_handler: HostsFileHandler):
        self.hosts_handler = hosts_handler

    def sweep(self) -> bool:
        """Returns True if a leftover region was removed, False if the file was clean."""
        path = self.hosts_handler.hosts_path
        try:
            content = self.hosts_handler.read_hosts()
            if not self.hosts_handler.has_managed_region(content):
                return False
            logging.warning(f"Found leftover domain blocks in {path} from a previous session; removing")
            removed = self.hosts_handler.clear()
        except EditError as e:
            logging.error(f"Startup cleanup of {path} failed: {e}")
            raise SweepError(f"Startup cleanup failed: {e}", operation="sweep", path=path) from e

        if removed:
            logging.info(f"Startup: removed leftover blocker entries from {path}")
        return removed
