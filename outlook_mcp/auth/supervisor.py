"""Supervision of the auth callback server child process.

The MCP server spawns ``python -m outlook_mcp auth-server`` and talks to
it only through OS signals and the token store file. Child output is
relayed line by line into this process's log under an ``[auth-server]``
tag. A child that dies is logged and left dead: interactive
authentication stays unavailable until the parent is restarted.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import contextlib
import json
import logging
import os
import signal
import subprocess
import sys
import threading

from typing import IO, TYPE_CHECKING, Any

from ..exceptions import ChildProcessUnavailable
from .types import ChildStatus, SupervisorState


if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from ..config import AuthConfig


logger = logging.getLogger("outlook_mcp.supervisor")

CHILD_TAG = "[auth-server]"


class AuthServerSupervisor:
    """Spawns, monitors and terminates the auth callback server.

    Parameters
    ----------
    config : AuthConfig
        Provides the shutdown grace window and startup timeout.
    command : sequence of str, optional
        Command line for the child (default: this interpreter running
        ``-m outlook_mcp auth-server``).
    env : dict, optional
        Extra environment variables for the child.
    """

    def __init__(
        self,
        config: AuthConfig,
        command: Sequence[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        """Initialize the supervisor."""
        self.config = config
        self.command = list(command or [sys.executable, "-u", "-m", "outlook_mcp", "auth-server"])
        self._extra_env = env or {}
        self.state = SupervisorState()
        self._process: subprocess.Popen[str] | None = None
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._ready_event = threading.Event()
        self._exited_event = threading.Event()
        self._stopping = False

    @property
    def pid(self) -> int | None:
        """PID of the current child, if one was spawned."""
        return self.state.child_pid

    def is_running(self) -> bool:
        """Check whether the child has announced readiness and is alive."""
        return (
            self._process is not None
            and self._process.poll() is None
            and self.state.child_status is ChildStatus.RUNNING
        )

    def start(self) -> SupervisorState:
        """Spawn the auth server child.

        Returns immediately; use :meth:`wait_ready` to block until the
        child is listening.

        Returns
        -------
        SupervisorState
            The state record for the new child (status STARTING).

        Raises
        ------
        ChildProcessUnavailable
            If the child process cannot be spawned.
        """
        if self._process is not None and self._process.poll() is None:
            return self.state

        env = os.environ.copy()
        env["PYTHONUNBUFFERED"] = "1"
        env["PYTHONUTF8"] = "1"
        env.update(self._extra_env)

        self._ready_event.clear()
        self._exited_event.clear()
        self._stopping = False

        try:
            self._process = subprocess.Popen(  # pylint: disable=R1732
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
                encoding="utf-8",
                errors="replace",
                env=env,
            )
        except OSError as exc:
            with self._lock:
                self.state = SupervisorState(child_status=ChildStatus.EXITED)
            logger.error("Failed to start auth server: %s", exc)
            msg = f"Failed to start auth server: {exc}"
            raise ChildProcessUnavailable(msg) from exc

        proc = self._process
        with self._lock:
            self.state = SupervisorState(child_pid=proc.pid, child_status=ChildStatus.STARTING)
        logger.info("Auth server starting (pid %s)", proc.pid)

        self._threads = [
            threading.Thread(
                target=self._read_stdout,
                args=(proc.stdout,),
                name="auth-server-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._relay_lines,
                args=(proc.stderr,),
                name="auth-server-stderr",
                daemon=True,
            ),
            threading.Thread(
                target=self._monitor,
                args=(proc,),
                name="auth-server-monitor",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()

        return self.state

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Block until the child is listening, exits, or the timeout passes.

        Parameters
        ----------
        timeout : float, optional
            Seconds to wait (default: ``startup_timeout_seconds``).

        Returns
        -------
        bool
            True if the child reached RUNNING.
        """
        if timeout is None:
            timeout = self.config.startup_timeout_seconds
        self._ready_event.wait(timeout)
        return self.state.child_status is ChildStatus.RUNNING

    def ensure_running(self) -> None:
        """Raise unless the auth server is up.

        Raises
        ------
        ChildProcessUnavailable
            If the child never started, is still starting, or has exited.
        """
        if self.is_running():
            return
        status = self.state.child_status.value
        msg = f"Authentication server is not running (status: {status})"
        raise ChildProcessUnavailable(msg, exit_code=self.state.exit_code)

    def shutdown(self, grace: float | None = None) -> None:
        """Terminate the child: SIGTERM, wait ``grace`` seconds, then SIGKILL.

        Safe to call more than once and when no child was started.

        Parameters
        ----------
        grace : float, optional
            Seconds to wait after SIGTERM (default: ``shutdown_grace_seconds``).
        """
        proc = self._process
        if proc is None:
            return
        if grace is None:
            grace = self.config.shutdown_grace_seconds

        self._stopping = True
        if proc.poll() is None:
            logger.info("Terminating auth server (pid %s)", proc.pid)
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            if not self._exited_event.wait(grace):
                logger.warning("Auth server did not exit within %.1fs; killing it", grace)
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                self._exited_event.wait(5.0)

        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=1.0)
        self._threads = []

        for pipe in (proc.stdout, proc.stderr):
            if pipe:
                with contextlib.suppress(OSError, ValueError):
                    pipe.close()

    def install_signal_handlers(
        self,
        signals: Iterable[int] = (signal.SIGTERM, signal.SIGINT),
    ) -> None:
        """Shut the child down and exit 0 when the parent receives ``signals``.

        Must be called from the main thread.
        """
        for signum in signals:
            signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum: int, _frame: Any = None) -> None:
        """Signal handler: graceful-then-forced child shutdown, then exit."""
        logger.info("Received %s; stopping auth server", signal.Signals(signum).name)
        self.shutdown()
        logger.info("Shutdown complete")
        sys.exit(0)

    def _read_stdout(self, stream: IO[str] | None) -> None:
        """Watch child stdout for the ready handshake; relay everything else."""
        if stream is None:
            return
        with contextlib.suppress(OSError, ValueError):
            for line in iter(stream.readline, ""):
                text = line.rstrip()
                if not text:
                    continue
                message = self._parse_control(text)
                if message is not None and message.get("type") == "ready":
                    self._mark_ready(message)
                else:
                    logger.info("%s %s", CHILD_TAG, text)

    def _relay_lines(self, stream: IO[str] | None) -> None:
        """Relay child diagnostic output into this process's log."""
        if stream is None:
            return
        with contextlib.suppress(OSError, ValueError):
            for line in iter(stream.readline, ""):
                text = line.rstrip()
                if text:
                    logger.info("%s %s", CHILD_TAG, text)

    def _monitor(self, proc: subprocess.Popen[str]) -> None:
        """Wait for the child to exit and record it. Never restarts it."""
        code = proc.wait()
        with self._lock:
            self.state.child_status = ChildStatus.EXITED
            self.state.exit_code = code
        self._exited_event.set()
        # Wake anyone still blocked in wait_ready()
        self._ready_event.set()

        if self._stopping:
            logger.info("Auth server exited with code %s", code)
        else:
            logger.error(
                "Auth server exited unexpectedly with code %s; interactive "
                "authentication is unavailable until the server is restarted",
                code,
            )

    def _mark_ready(self, message: dict[str, Any]) -> None:
        with self._lock:
            if self.state.child_status is ChildStatus.EXITED:
                return
            self.state.child_status = ChildStatus.RUNNING
            self.state.host = message.get("host")
            self.state.port = message.get("port")
        logger.info(
            "Auth server ready on http://%s:%s (pid %s)",
            self.state.host,
            self.state.port,
            self.state.child_pid,
        )
        self._ready_event.set()

    @staticmethod
    def _parse_control(text: str) -> dict[str, Any] | None:
        """Parse a JSON control line from the child, if it is one."""
        if not text.startswith("{"):
            return None
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            return None
        return message if isinstance(message, dict) else None
