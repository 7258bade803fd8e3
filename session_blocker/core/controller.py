#!/usr/bin/env python3
import logging
import threading
from typing import Iterable, Optional

from session_blocker.core.errors import BlockError, BootstrapError, EditError, SweepError
from session_blocker.core.monitor import ProcessMonitor
from session_blocker.core.recovery import CrashRecoverySweep
from session_blocker.core.state import BlockerState, BlockerStatus, ordered_unique
from session_blocker.file_handlers.hosts_file import HostsFileHandler
from session_blocker.security.bootstrap import PrivilegeBootstrapper
from session_blocker.security.privileged import PrivilegedRunner
from session_blocker.system.platforms import PlatformCapabilities, detect_platform
from session_blocker.utils.config import BlockerConfig


class BlockingSessionController:
    """Single entry point for the rest of the application.

    Inactive --start_blocking--> Active --stop_blocking--> Inactive. Calling
    start_blocking while active reconfigures the running session. State
    transitions are serialised with a lock so double-fired UI actions cannot
    interleave hosts edits.
    """

    def __init__(self, config: Optional[BlockerConfig] = None,
                 platform: Optional[PlatformCapabilities] = None,
                 state: Optional[BlockerState] = None,
                 hosts_handler: Optional[HostsFileHandler] = None,
                 monitor: Optional[ProcessMonitor] = None,
                 bootstrapper: Optional[PrivilegeBootstrapper] = None,
                 sweeper: Optional[CrashRecoverySweep] = None):
        self.config = config or BlockerConfig()
        self.state = state or BlockerState()
        self.platform = platform or detect_platform(kill_grace_period=self.config.kill_grace_period)

        self.runner = PrivilegedRunner(self.config, self.state, self.platform)
        self.hosts_handler = hosts_handler or HostsFileHandler(self.config, self.runner)
        self.monitor = monitor or ProcessMonitor(self.platform, self.state, self.config.monitor_interval)
        self.bootstrapper = bootstrapper or PrivilegeBootstrapper(self.config, self.state, self.platform)
        self.sweeper = sweeper or CrashRecoverySweep(self.hosts_handler)

        self._lock = threading.RLock()

    # ---------- startup ----------

    def startup(self) -> BlockerStatus:
        """Repair leftovers from a crashed session, then set up passwordless privilege.

        Neither step is allowed to stop the application from starting.
        """
        with self._lock:
            self.state.privilege_ready = self.bootstrapper.is_installed()
            try:
                self.sweeper.sweep()
            except SweepError as e:
                self.state.last_error = str(e)
            self.ensure_bootstrapped()
            return self.get_status()

    def ensure_bootstrapped(self) -> bool:
        try:
            self.bootstrapper.ensure_bootstrapped()
            return True
        except BootstrapError as e:
            logging.warning(f"Continuing without passwordless privilege; each hosts edit will prompt: {e}")
            self.state.last_error = str(e)
            return False

    # ---------- session lifecycle ----------

    def start_blocking(self, domains: Iterable[str], apps: Iterable[str]) -> BlockerStatus:
        """Block the given domains and apps. Raises BlockError if the hosts edit fails,
        in which case the previous state is left untouched."""
        domains = ordered_unique(domains)
        apps = ordered_unique(apps)
        with self._lock:
            try:
                if domains:
                    self.hosts_handler.apply(domains)
                elif self.state.blocked_domains:
                    # Reconfigured down to no domains; drop the old region.
                    self.hosts_handler.clear()
            except EditError as e:
                self.state.last_error = str(e)
                logging.error(f"Blocking not started: {e}")
                raise BlockError(f"Failed to start blocking: {e}", operation="start_blocking",
                                 path=e.path) from e

            self.state.active = True
            self.state.blocked_domains = domains
            self.state.blocked_apps = apps
            self.state.detected_apps = []
            self.state.last_error = None

            if apps:
                self.monitor.start(apps, self.config.monitor_interval)
            else:
                self.monitor.stop()

            logging.info(f"Blocking active: {len(domains)} domain(s), {len(apps)} app(s)")
            return self.get_status()

    def stop_blocking(self) -> BlockerStatus:
        """Stop blocking. Always clears in-memory state and the monitor.

        A failure to clean the hosts file does not raise; it is logged and
        reported in the returned status's `last_error`. The startup sweep
        removes whatever was left behind.
        """
        with self._lock:
            if not self.state.active:
                return self.get_status()

            error = None
            if self.state.blocked_domains:
                try:
                    self.hosts_handler.clear()
                except EditError as e:
                    logging.error(f"Failed to clean hosts file while stopping: {e}")
                    error = str(e)

            self.monitor.stop()
            self.state.reset()
            self.state.last_error = error
            logging.info("Blocking stopped")
            return self.get_status()

    def emergency_unlock(self) -> BlockerStatus:
        """User-initiated early stop. Confirmation is the caller's job."""
        logging.warning("Emergency unlock requested")
        return self.stop_blocking()

    def cleanup(self) -> BlockerStatus:
        """Called when the application quits."""
        with self._lock:
            if self.state.active:
                return self.stop_blocking()
            return self.get_status()

    def get_status(self) -> BlockerStatus:
        return self.state.snapshot()
