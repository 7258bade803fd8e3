import os
import shutil
import subprocess

import pytest

from conftest import ORIGINAL_HOSTS, install_artifacts, read
from session_blocker.core.errors import BootstrapError
from session_blocker.core.state import BlockerState
from session_blocker.security.bootstrap import PrivilegeBootstrapper


@pytest.fixture
def state():
    return BlockerState()


@pytest.fixture
def bootstrapper(config, state, fake_platform):
    fake_platform.on_elevate = lambda command: install_artifacts(config)
    return PrivilegeBootstrapper(config, state, fake_platform)


def test_bootstrap_elevates_once_then_is_a_no_op(bootstrapper, fake_platform, state):
    bootstrapper.ensure_bootstrapped()
    bootstrapper.ensure_bootstrapped()

    assert len(fake_platform.elevations) == 1
    assert state.privilege_ready is True


def test_existing_artifacts_skip_elevation(bootstrapper, config, fake_platform, state):
    install_artifacts(config)
    bootstrapper.ensure_bootstrapped()

    assert fake_platform.elevations == []
    assert state.privilege_ready is True


def test_install_command_validates_and_sets_ownership(bootstrapper, config, fake_platform):
    bootstrapper.ensure_bootstrapped()
    command = fake_platform.elevations[0]

    assert command.startswith("visudo -cf ")
    assert f"chmod 755 {config.helper_path}" in command
    assert f"chmod 440 {config.sudoers_path}" in command
    assert f"chown root:staff {config.sudoers_path}" in command


def test_staged_files_are_removed(bootstrapper, config):
    bootstrapper.ensure_bootstrapped()
    assert os.listdir(config.staging_dir) == []


def test_sudoers_rule_names_exact_helper_path(bootstrapper, config):
    rule = bootstrapper.sudoers_rule("alice")
    assert rule == f"alice ALL=(root) NOPASSWD: {config.helper_path}\n"
    assert "*" not in rule


def test_sudoers_rule_rejects_glob_helper_path(bootstrapper, config):
    config.helper_path = "/usr/local/bin/*"
    with pytest.raises(BootstrapError):
        bootstrapper.sudoers_rule("alice")


def test_sudoers_rule_rejects_shell_in_helper_path(bootstrapper, config):
    config.helper_path = "/usr/local/bin/helper; rm -rf /"
    with pytest.raises(BootstrapError):
        bootstrapper.sudoers_rule("alice")


def test_sudoers_rule_rejects_relative_helper_path(bootstrapper, config):
    config.helper_path = "bin/helper"
    with pytest.raises(BootstrapError):
        bootstrapper.sudoers_rule("alice")


def test_sudoers_fragment_name_without_dot(bootstrapper, config):
    config.sudoers_path = config.sudoers_path + ".conf"
    with pytest.raises(BootstrapError):
        bootstrapper.sudoers_rule("alice")


def test_denied_elevation_raises_and_stays_not_ready(bootstrapper, config, fake_platform, state):
    fake_platform.deny_elevation = True

    with pytest.raises(BootstrapError) as excinfo:
        bootstrapper.ensure_bootstrapped()

    assert excinfo.value.operation == "install"
    assert state.privilege_ready is False
    assert os.listdir(config.staging_dir) == []


def test_install_that_leaves_no_helper_is_an_error(config, state, fake_platform):
    bootstrapper = PrivilegeBootstrapper(config, state, fake_platform)
    with pytest.raises(BootstrapError) as excinfo:
        bootstrapper.ensure_bootstrapped()
    assert excinfo.value.operation == "verify"
    assert state.privilege_ready is False


def test_helper_script_only_touches_configured_hosts_file(bootstrapper, config):
    script = bootstrapper.helper_script()

    assert script.startswith("#!/bin/bash\n")
    assert f"HOSTS_PATH={config.hosts_path}" in script
    assert 'cat > "$NEXT_PATH"' in script
    assert 'mv -f "$NEXT_PATH" "$HOSTS_PATH"' in script
    assert "dscacheutil -flushcache" in script
    assert "install)" in script and "flush)" in script


def test_installed_check_asks_sudo_instead_of_reading_sudoers_dir(bootstrapper, config, fake_platform):
    install_artifacts(config)
    sudoers_dir = os.path.dirname(config.sudoers_path)
    os.chmod(sudoers_dir, 0o000)
    try:
        assert bootstrapper.is_installed() is True
    finally:
        os.chmod(sudoers_dir, 0o750)

    assert fake_platform.commands.calls[-1]["cmd"] == ["sudo", "-n", "-l", config.helper_path]


def test_rule_not_in_effect_means_not_installed(bootstrapper, config, fake_platform, state):
    install_artifacts(config)
    fake_platform.commands.fail.add("-l")

    assert bootstrapper.is_installed() is False
    with pytest.raises(BootstrapError) as excinfo:
        bootstrapper.ensure_bootstrapped()
    assert excinfo.value.operation == "verify"
    assert len(fake_platform.elevations) == 1
    assert state.privilege_ready is False


@pytest.fixture
def helper_env(bootstrapper, tmp_path):
    """The generated helper on disk, with a no-op chown ahead of the real one on PATH."""
    if shutil.which("bash") is None:
        pytest.skip("bash is not available")
    bin_dir = tmp_path / "fakebin"
    bin_dir.mkdir()
    chown = bin_dir / "chown"
    chown.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    chown.chmod(0o755)

    helper = tmp_path / "helper.sh"
    helper.write_text(bootstrapper.helper_script(), encoding="utf-8")
    helper.chmod(0o755)

    env = dict(os.environ, PATH=f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return str(helper), env


def _run_helper(helper_env, action, stdin=""):
    helper, env = helper_env
    return subprocess.run(["bash", helper, action], input=stdin, capture_output=True,
                          text=True, env=env, timeout=30)


def test_helper_install_replaces_hosts_from_stdin(helper_env, config):
    new_content = ORIGINAL_HOSTS + "\n127.0.0.1 example.com\n"

    result = _run_helper(helper_env, "install", new_content)

    assert result.returncode == 0, result.stderr
    assert read(config.hosts_path) == new_content
    assert not os.path.exists(f"{config.hosts_path}.session-blocker.new")


def test_helper_refuses_empty_input(helper_env, config):
    result = _run_helper(helper_env, "install", "")

    assert result.returncode == 1
    assert "empty" in result.stderr
    assert read(config.hosts_path) == ORIGINAL_HOSTS
    assert not os.path.exists(f"{config.hosts_path}.session-blocker.new")


def test_helper_rejects_unknown_action(helper_env, config):
    result = _run_helper(helper_env, "cat")

    assert result.returncode == 64
    assert read(config.hosts_path) == ORIGINAL_HOSTS


def test_helper_flush_succeeds(helper_env):
    assert _run_helper(helper_env, "flush").returncode == 0
