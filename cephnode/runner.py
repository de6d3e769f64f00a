"""Running external commands and managing snap services."""

from __future__ import annotations

import logging
import subprocess

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """An external command failed to start, timed out or exited non-zero."""

    def __init__(
        self,
        command,
        returncode: int | None = None,
        stderr: str = "",
        reason: str = "",
        timed_out: bool = False,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        message = f"Failed to run: {' '.join(self.command)}: {reason}"
        if stderr.strip():
            message += f" ({stderr.strip()})"
        super().__init__(message)


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


class Runner:
    """Launches processes and returns their standard output."""

    def run(self, name: str, *args: str, stdin: str | bytes | None = None,
            timeout: float | None = None) -> str:
        """Run ``name`` with ``args``; raise CommandError on failure."""
        command = (name, *args)
        kwargs: dict = {"capture_output": True, "timeout": timeout, "check": False}
        if stdin is None:
            kwargs["stdin"] = subprocess.DEVNULL
        else:
            kwargs["input"] = stdin.encode("utf-8") if isinstance(stdin, str) else stdin
        try:
            completed = subprocess.run(command, **kwargs)
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                command,
                stderr=_decode(exc.stderr),
                reason=f"timed out after {timeout}s",
                timed_out=True,
            ) from exc
        except OSError as exc:
            raise CommandError(command, reason=str(exc)) from exc
        if completed.returncode != 0:
            raise CommandError(
                command,
                returncode=completed.returncode,
                stderr=_decode(completed.stderr),
                reason=f"exit status {completed.returncode}",
            )
        return _decode(completed.stdout)


_runner: Runner = Runner()


def get_runner() -> Runner:
    """Return the runner used for all external commands."""
    return _runner


def set_runner(runner: Runner) -> Runner:
    """Replace the runner used for all external commands; return the old one.

    Raises TypeError when ``runner`` has no callable ``run`` method.
    """
    global _runner
    if not callable(getattr(runner, "run", None)):
        raise TypeError(f"{type(runner).__name__} object cannot run commands")
    previous = _runner
    _runner = runner
    return previous


def ceph_run(*args: str) -> str:
    """Run the ceph command line tool."""
    return get_runner().run("ceph", *args)


def is_interface_connected(name: str) -> bool:
    """Report whether the named snap interface is connected."""
    try:
        get_runner().run("snapctl", "is-connected", name)
    except CommandError as exc:
        logger.error("Failure: check is-connected %s: %s", name, exc)
        return False
    return True


def snap_start(service: str, enable: bool = False) -> None:
    """Start a snap service, optionally enabling it."""
    args = ["start", f"microceph.{service}"]
    if enable:
        args.append("--enable")
    get_runner().run("snapctl", *args)


def snap_stop(service: str, disable: bool = False) -> None:
    """Stop a snap service, optionally disabling it."""
    args = ["stop", f"microceph.{service}"]
    if disable:
        args.append("--disable")
    get_runner().run("snapctl", *args)


def snap_restart(service: str, reload: bool = False) -> None:
    """Restart a snap service, or reload it when ``reload`` is set."""
    args = ["restart"]
    if reload:
        args.append("--reload")
    args.append(f"microceph.{service}")
    get_runner().run("snapctl", *args)


def snap_check_active(service: str) -> None:
    """Raise RuntimeError unless the snap service is active."""
    out = get_runner().run("snapctl", "services", f"microceph.{service}")
    if "inactive" in out:
        raise RuntimeError(f"{service} service is not active")