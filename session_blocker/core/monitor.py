#!/usr/bin/env python3
"""
Process monitor for killing blocked applications during a session.
"""

from __future__ import annotations

import os
import logging
import threading
from typing import Iterable, List, Optional

from session_blocker.core.state import BlockerState, ordered_unique
from session_blocker.system.platforms import PlatformCapabilities

DEFAULT_INTERVAL = 10.0


class ProcessMonitor:
    """
    Polls running processes on a background thread and terminates any whose
    name or command line contains one of the blocked app names.

    Apps found on a tick are published to `state.detected_apps` and announced
    with a desktop notification. Detection is polling based, so an app
    launched between two ticks runs until the next one.
    """

    def __init__(self, platform: PlatformCapabilities, state: BlockerState,
                 interval: float = DEFAULT_INTERVAL, notification_title: str = "Distraction Blocked"):
        self.platform = platform
        self.state = state
        self.interval = interval
        self.notification_title = notification_title
        self.app_names: List[str] = []
        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    def start(self, app_names: Iterable[str], interval: Optional[float] = None) -> None:
        """Start polling, replacing any monitor that is already running.

        An empty app list stops the old monitor and starts nothing.
        """
        self.stop()
        app_names = ordered_unique(app_names)
        if not app_names:
            logging.debug("No apps to monitor; process monitor not started")
            return

        with self._lock:
            self.app_names = app_names
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._monitor_loop,
                args=(stop_event, interval or self.interval),
                name="session-blocker-monitor",
                daemon=True,
            )
            self.state.monitor_handle = self._thread
            self._thread.start()
        logging.info(f"Monitoring {len(app_names)} app(s): {', '.join(app_names)}")

    def stop(self) -> None:
        """Cancel future ticks and clear detections. Safe to call mid-tick."""
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
                logging.info("Stopped process monitor")
            self._stop_event = None
            self._thread = None
            self.state.monitor_handle = None
            self.state.detected_apps = []

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def _monitor_loop(self, stop_event: threading.Event, interval: float) -> None:
        while not stop_event.wait(interval):
            try:
                self.tick(stop_event)
            except Exception as e:
                logging.error(f"Process monitor tick failed: {e}")

    def tick(self, stop_event: Optional[threading.Event] = None) -> List[str]:
        """Run one detect-and-kill pass. Returns the app names detected."""
        app_names = list(self.app_names)
        own_pid = os.getpid()
        processes = [proc for proc in self.platform.list_processes() if proc.pid != own_pid]

        detected = []
        for app_name in app_names:
            matches = [proc for proc in processes if proc.matches(app_name)]
            if not matches:
                continue
            detected.append(app_name)
            for proc in matches:
                if self.platform.terminate(proc.pid):
                    logging.info(f"Terminated {proc.name} (PID {proc.pid}) matching blocked app {app_name}")
                else:
                    logging.debug(f"Could not terminate PID {proc.pid} for {app_name}")

        with self._lock:
            if stop_event is not None and stop_event.is_set():
                # Stopped while this tick ran; leave the cleared state alone.
                return detected
            self.state.detected_apps = detected
        if detected:
            self._notify(detected)
        return detected

    def _notify(self, detected: List[str]) -> None:
        plural = "s" if len(detected) > 1 else ""
        body = f"Force-quit blocked app{plural}: {', '.join(detected)}"
        try:
            self.platform.notify(self.notification_title, body, urgency="critical")
        except (RuntimeError, OSError) as e:
            logging.warning(f"Failed to show notification: {e}")
