import os
import shutil
import subprocess

import pytest

from session_blocker.core.controller import BlockingSessionController
from session_blocker.core.state import BlockerState
from session_blocker.file_handlers.hosts_file import HostsFileHandler
from session_blocker.system.commands import CommandError
from session_blocker.system.platforms import PlatformCapabilities, ProcessInfo
from session_blocker.utils.config import BlockerConfig

ORIGINAL_HOSTS = (
    "##\n"
    "# Host Database\n"
    "##\n"
    "127.0.0.1\tlocalhost\n"
    "255.255.255.255\tbroadcasthost\n"
    "::1             localhost\n"
)


class FakeCommands:
    def __init__(self):
        self.calls = []
        self.fail = set()

    def run(self, cmd, check=True, timeout=None, input=None):
        cmd = list(cmd)
        self.calls.append({"cmd": cmd, "input": input, "timeout": timeout})
        if any(token in self.fail for token in cmd):
            raise CommandError(cmd, 1, "", "sudo: a password is required")
        return subprocess.CompletedProcess(cmd, 0, "", "")


class FakePlatform(PlatformCapabilities):
    name = "fake"
    admin_group = "staff"

    def __init__(self):
        super().__init__(commands=FakeCommands(), kill_grace_period=0)
        self.elevations = []
        self.deny_elevation = False
        self.on_elevate = None
        self.processes = {}
        self.terminated = []
        self.unkillable = set()
        self.notifications = []
        self.flushes = 0
        self.flush_fails = False

    def add_process(self, pid, name, cmdline=""):
        self.processes[pid] = ProcessInfo(pid, name, cmdline or name)

    def list_processes(self):
        return list(self.processes.values())

    def terminate(self, pid):
        if pid in self.unkillable or pid not in self.processes:
            return False
        del self.processes[pid]
        self.terminated.append(pid)
        return True

    def elevate(self, shell_command, timeout=None):
        self.elevations.append(shell_command)
        if self.deny_elevation:
            raise CommandError(["/usr/bin/osascript", "-e", "..."], 1, "", "User canceled. (-128)")
        if self.on_elevate:
            self.on_elevate(shell_command)

    def dns_flush_shell(self):
        return ["dscacheutil -flushcache 2>/dev/null || true"]

    def flush_dns_cache(self):
        self.flushes += 1
        if self.flush_fails:
            raise CommandError(["dscacheutil", "-flushcache"], 1, "", "flush failed")

    def notify(self, title, body, urgency="normal"):
        self.notifications.append((title, body, urgency))


class FakeRunner:
    """Stands in for PrivilegedRunner: installs by plain copy, no root needed."""

    def __init__(self, hosts_path):
        self.hosts_path = hosts_path
        self.installs = 0
        self.flushes = 0
        self.fail_install = False

    def install_file(self, staged_path):
        if self.fail_install:
            raise CommandError(["sudo", "-n", "helper", "install"], 1, "", "Permission denied")
        self.installs += 1
        shutil.copyfile(staged_path, self.hosts_path)

    def flush_dns_cache(self):
        self.flushes += 1


@pytest.fixture
def config(tmp_path):
    hosts = tmp_path / "etc" / "hosts"
    hosts.parent.mkdir()
    hosts.write_text(ORIGINAL_HOSTS, encoding="utf-8")
    return BlockerConfig(
        hosts_path=str(hosts),
        helper_path=str(tmp_path / "usr" / "local" / "bin" / "session-blocker-helper"),
        sudoers_path=str(tmp_path / "etc" / "sudoers.d" / "session-blocker"),
        state_dir=str(tmp_path / "state"),
        monitor_interval=60,
        elevation_timeout=5,
        command_timeout=5,
    )


@pytest.fixture
def fake_platform():
    return FakePlatform()


@pytest.fixture
def fake_runner(config):
    return FakeRunner(config.hosts_path)


@pytest.fixture
def hosts_handler(config, fake_runner):
    return HostsFileHandler(config, fake_runner)


@pytest.fixture
def controller(config, fake_platform, hosts_handler):
    ctl = BlockingSessionController(config, platform=fake_platform, state=BlockerState(),
                                    hosts_handler=hosts_handler)
    yield ctl
    ctl.monitor.stop()


def read(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def install_artifacts(config):
    """Simulate what the elevated install command leaves behind."""
    for path in (config.helper_path, config.sudoers_path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("installed\n")
