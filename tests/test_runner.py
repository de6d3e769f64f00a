import sys

import pytest

from cephnode.runner import (
    CommandError,
    Runner,
    ceph_run,
    get_runner,
    is_interface_connected,
    set_runner,
    snap_check_active,
    snap_restart,
    snap_start,
    snap_stop,
)


class FakeRunner(Runner):
    def __init__(self, output="ok", fail=False):
        self.calls = []
        self.output = output
        self.fail = fail

    def run(self, name, *args, stdin=None, timeout=None):
        self.calls.append((name, *args))
        if self.fail:
            raise CommandError((name, *args), 1, "boom", "exit status 1")
        return self.output


@pytest.fixture
def install():
    installed = []

    def _install(runner):
        installed.append(set_runner(runner))
        return runner

    yield _install
    for previous in installed:
        set_runner(previous)


def test_run_returns_stdout():
    out = Runner().run(sys.executable, "-c", "import sys; sys.stdout.write('hello')")
    assert out == "hello"


def test_run_passes_stdin():
    out = Runner().run(
        sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read())", stdin="abc"
    )
    assert out == "abc"


def test_run_nonzero_exit_raises_with_code():
    with pytest.raises(CommandError) as info:
        Runner().run(sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)")
    assert info.value.returncode == 3
    assert info.value.stderr == "bad"
    assert "bad" in str(info.value)


def test_run_missing_binary_raises():
    with pytest.raises(CommandError) as info:
        Runner().run("definitely-not-a-real-binary-xyz")
    assert info.value.returncode is None


def test_run_timeout_raises():
    with pytest.raises(CommandError) as info:
        Runner().run(sys.executable, "-c", "import time; time.sleep(5)", timeout=0.2)
    assert info.value.timed_out is True


def test_set_runner_returns_previous(install):
    fake = FakeRunner()
    previous = get_runner()
    assert set_runner(fake) is previous
    assert get_runner() is fake
    set_runner(previous)
    assert get_runner() is previous


def test_ceph_run(install):
    fake = install(FakeRunner(output="health"))
    assert ceph_run("status") == "health"
    assert fake.calls == [("ceph", "status")]


def test_interface_connected(install):
    fake = install(FakeRunner())
    assert is_interface_connected("dm-crypt") is True
    assert fake.calls == [("snapctl", "is-connected", "dm-crypt")]


def test_interface_not_connected(install):
    install(FakeRunner(fail=True))
    assert is_interface_connected("dm-crypt") is False


@pytest.mark.parametrize(
    "call, expected",
    [
        (lambda: snap_start("mon", True), ("snapctl", "start", "microceph.mon", "--enable")),
        (lambda: snap_start("mon", False), ("snapctl", "start", "microceph.mon")),
        (lambda: snap_stop("rgw", True), ("snapctl", "stop", "microceph.rgw", "--disable")),
        (lambda: snap_stop("rgw", False), ("snapctl", "stop", "microceph.rgw")),
        (lambda: snap_restart("osd", True), ("snapctl", "restart", "--reload", "microceph.osd")),
        (lambda: snap_restart("osd", False), ("snapctl", "restart", "microceph.osd")),
    ],
)
def test_snap_commands(install, call, expected):
    fake = install(FakeRunner())
    call()
    assert fake.calls == [expected]


def test_snap_command_failure_propagates(install):
    install(FakeRunner(fail=True))
    with pytest.raises(CommandError):
        snap_start("mon", True)


def test_check_active_ok(install):
    fake = install(FakeRunner(output="microceph.rgw enabled active"))
    snap_check_active("rgw")
    assert fake.calls == [("snapctl", "services", "microceph.rgw")]


def test_check_inactive_raises(install):
    install(FakeRunner(output="microceph.rgw disabled inactive"))
    with pytest.raises(RuntimeError, match="rgw service is not active"):
        snap_check_active("rgw")