#!/usr/bin/env python3
import os
import sys
import time
import signal
import logging
import argparse
import threading

import lockfile
import psutil
from daemon import DaemonContext
from daemon.pidfile import TimeoutPIDLockFile
from lockfile.pidlockfile import read_pid_from_pidfile

from session_blocker.core.controller import BlockingSessionController
from session_blocker.core.errors import BlockError, SweepError
from session_blocker.file_handlers.block_list import BlockListHandler
from session_blocker.utils.config import load_config

CONFIRMATION_PHRASE = "unlock"


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='Block distracting websites and apps for a focus session')
    parser.add_argument('--config', help='Path to a JSON config file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log debug output')
    sub = parser.add_subparsers(dest='command', required=True)

    p_start = sub.add_parser('start', help='Block for a number of minutes')
    p_start.add_argument('--duration', type=int, required=True, help='Duration in minutes')
    p_start.add_argument('--domain', '-d', action='append', default=[], help='Domain to block (repeatable)')
    p_start.add_argument('--app', '-a', action='append', default=[], help='Application name to block (repeatable)')
    p_start.add_argument('--block-list', '-f', help='Block list file (domains, and apps as "app:Name")')
    p_start.add_argument('--daemon', action='store_true', help='Run as a daemon in the background')

    sub.add_parser('setup', help='Install the passwordless helper (one elevation prompt)')
    sub.add_parser('sweep', help='Remove blocks left behind by a crashed session')
    sub.add_parser('status', help='Show whether a session is running')

    p_unlock = sub.add_parser('unlock', help='Emergency unlock: stop the running session now')
    p_unlock.add_argument('--yes', action='store_true', help='Skip the confirmation phrase')
    return parser.parse_args(argv)


def configure_logging(config, verbose=False):
    config.ensure_state_dir()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.log_file),
            logging.StreamHandler()
        ]
    )


class FocusSession:
    """Runs one timed blocking session and stops it on expiry or on a signal."""

    def __init__(self, controller, duration_minutes, domains, apps):
        self.controller = controller
        self.duration_minutes = duration_minutes
        self.domains = domains
        self.apps = apps
        self.stop_event = threading.Event()

    def _signal_handler(self, signum, frame):
        sig_name = signal.Signals(signum).name
        logging.warning(f"Received signal {sig_name} ({signum}); ending session")
        self.stop_event.set()

    def install_signal_handlers(self):
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def run(self):
        try:
            self.controller.start_blocking(self.domains, self.apps)
        except BlockError as e:
            logging.error(f"Session not started: {e}")
            return 1

        deadline = time.monotonic() + self.duration_minutes * 60
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logging.info("Session time is up")
                    break
                logging.info(f"{remaining / 60:.1f} minutes remaining")
                if self.stop_event.wait(min(60, remaining)):
                    break
        finally:
            status = self.controller.stop_blocking()

        if status.last_error:
            logging.error(f"Session ended but cleanup reported: {status.last_error}")
            return 1
        return 0


def _pidfile(config):
    pidfile = TimeoutPIDLockFile(config.pid_file, acquire_timeout=0)
    pid = read_pid_from_pidfile(config.pid_file)
    if pid is not None and not psutil.pid_exists(pid):
        logging.warning(f"Removing stale PID file {config.pid_file} (PID {pid} is gone)")
        pidfile.break_lock()
    return pidfile


def live_session_pid(config):
    """PID of a running session that owns the PID file, or None."""
    pid = read_pid_from_pidfile(config.pid_file)
    if pid is not None and psutil.pid_exists(pid):
        return pid
    return None


def run_daemon(session, config):
    """Run the session as a daemon"""
    pidfile = _pidfile(config)
    if pidfile.is_locked():
        logging.error(f"Another session is already running (PID {pidfile.read_pid()})")
        return 1

    context = DaemonContext(
        working_directory='/',
        umask=0o022,
        pidfile=pidfile,
        detach_process=True,
        files_preserve=[handler.stream.fileno() for handler in logging.getLogger().handlers if hasattr(handler, 'stream')]
    )
    context.signal_map = {signal.SIGTERM: session._signal_handler, signal.SIGINT: session._signal_handler}
    try:
        with context:
            logging.info(f"Session daemon started (PID {os.getpid()})")
            return session.run()
    except lockfile.AlreadyLocked:
        logging.error("Another session is already running")
        return 1


def run_foreground(session, config):
    """Run the session in the foreground"""
    pidfile = _pidfile(config)
    try:
        pidfile.acquire()
    except lockfile.AlreadyLocked:
        logging.error(f"Another session is already running (PID {pidfile.read_pid()})")
        return 1
    try:
        session.install_signal_handlers()
        return session.run()
    finally:
        pidfile.release()


def command_start(controller, config, args):
    domains = list(args.domain)
    apps = list(args.app)
    if args.block_list:
        file_domains, file_apps = BlockListHandler(args.block_list).read_block_list()
        domains.extend(file_domains)
        apps.extend(file_apps)
    if not domains and not apps:
        logging.error("Nothing to block. Use --domain, --app or --block-list")
        return 2
    if args.duration <= 0:
        logging.error("Duration must be positive")
        return 2

    pid = live_session_pid(config)
    if pid is not None:
        logging.error(f"Another session is already running (PID {pid})")
        return 1

    # Prompts happen here, before the process detaches.
    controller.startup()

    session = FocusSession(controller, args.duration, domains, apps)
    if args.daemon:
        return run_daemon(session, config)
    return run_foreground(session, config)


def command_sweep(controller, config):
    pid = live_session_pid(config)
    if pid is not None:
        logging.error(f"Session PID {pid} is running; its blocks are not leftovers. Use unlock to end it")
        return 1
    controller.state.privilege_ready = controller.bootstrapper.is_installed()
    try:
        controller.sweeper.sweep()
    except SweepError:
        return 1
    return 0


def command_status(controller, config):
    pid = live_session_pid(config)
    print(f"Session running: yes (PID {pid})" if pid is not None else "Session running: no")
    print(f"Hosts file has managed block: {'yes' if controller.hosts_handler.has_managed_region() else 'no'}")
    print(f"Passwordless helper installed: {'yes' if controller.bootstrapper.is_installed() else 'no'}")
    return 0


def command_unlock(controller, config, args):
    if not args.yes:
        answer = input(f'Type "{CONFIRMATION_PHRASE}" to remove all blocks now: ')
        if answer.strip().lower() != CONFIRMATION_PHRASE:
            print("Confirmation phrase did not match. Blocking continues.")
            return 1

    pid = live_session_pid(config)
    if pid is not None:
        try:
            os.kill(pid, signal.SIGTERM)
            print(f"Sent SIGTERM to session PID {pid}. Blocking will stop shortly.")
            return 0
        except PermissionError:
            logging.error(f"Not allowed to signal session PID {pid}")
            return 1
        except ProcessLookupError:
            pass

    # No live session: clear whatever a dead one left behind.
    controller.state.privilege_ready = controller.bootstrapper.is_installed()
    try:
        removed = controller.sweeper.sweep()
    except SweepError as e:
        logging.error(f"Emergency unlock failed: {e}")
        return 1
    print("Removed leftover blocks." if removed else "Nothing was blocked.")
    return 0


def main(argv=None):
    """Main entry point"""
    args = parse_arguments(argv)
    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(config, args.verbose)
    controller = BlockingSessionController(config)

    if args.command == 'start':
        return command_start(controller, config, args)
    if args.command == 'setup':
        return 0 if controller.ensure_bootstrapped() else 1
    if args.command == 'sweep':
        return command_sweep(controller, config)
    if args.command == 'status':
        return command_status(controller, config)
    if args.command == 'unlock':
        return command_unlock(controller, config, args)
    return 2

