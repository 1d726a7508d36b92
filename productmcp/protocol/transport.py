"""Tool server process transport: a child process spoken to over stdin/stdout lines."""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when talking to the child process fails."""


class TransportSpawnError(TransportError):
    """The child process could not be started."""


class TransportClosedError(TransportError):
    """The pipe broke or the child closed its output."""


class TransportTimeoutError(TransportError):
    """No reply line arrived before the deadline."""


_EOF = None


class LineTransport(ABC):
    """Line-oriented, half-duplex channel to a tool server."""

    @abstractmethod
    def send(self, line: str) -> None:
        """Write one line; the transport adds the terminator."""

    @abstractmethod
    def receive_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """Return the next line, or ``None`` at end of stream."""

    @abstractmethod
    def terminate(self, timeout: Optional[float] = 5.0) -> Optional[int]:
        """Release the peer."""


class ProcessTransport(LineTransport):
    """
    Own exactly one child process and exchange newline-terminated lines with it.

    ``send`` writes one line; ``receive_line`` returns the next line or
    ``None`` at end of stream. The transport expects a single caller at a
    time; ``ProtocolClient`` serializes access.

    Stdout is drained by a daemon thread into a queue so that
    ``receive_line`` can honour an optional timeout. Stderr is inherited and
    never part of the protocol.

    Example:
        >>> with ProcessTransport.spawn(["productmcp-server"]) as transport:
        ...     transport.send('{"jsonrpc": "2.0", "id": 1, "method": "tools/list"}')
        ...     line = transport.receive_line()
    """

    def __init__(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.env = env or {}
        self.cwd = cwd
        self._process: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._reader: Optional[threading.Thread] = None
        self._eof = False

    @classmethod
    def spawn(
        cls,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> "ProcessTransport":
        """Create and start a transport; raises ``TransportSpawnError`` with nothing left behind."""
        transport = cls(command, env=env, cwd=cwd)
        transport.start()
        return transport

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the child process."""
        if self._process is not None:
            raise TransportError("transport already started")

        merged_env = {**os.environ, **self.env}
        try:
            process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                env=merged_env,
                cwd=self.cwd,
            )
        except OSError as exc:
            raise TransportSpawnError(
                f"Failed to start tool server {' '.join(self.command)}: {exc}"
            ) from exc

        self._process = process
        self._reader = threading.Thread(
            target=self._drain_stdout,
            name=f"transport-reader-{process.pid}",
            daemon=True,
        )
        self._reader.start()
        logger.info("Started tool server pid=%s: %s", process.pid, " ".join(self.command))

    def _drain_stdout(self) -> None:
        stdout = self._process.stdout
        try:
            for raw in iter(stdout.readline, b""):
                self._lines.put(raw)
        except (OSError, ValueError) as exc:
            logger.debug("Reader stopped: %s", exc)
        finally:
            self._lines.put(_EOF)

    def terminate(self, timeout: Optional[float] = 5.0) -> Optional[int]:
        """
        Close the child's input and wait for it to exit.

        Closing stdin is the normal shutdown signal; the child is killed only
        if it has not exited within ``timeout`` seconds. Safe to call twice.
        """
        process = self._process
        if process is None:
            return None

        if process.stdin and not process.stdin.closed:
            try:
                process.stdin.close()
            except OSError as exc:
                logger.debug("Closing child stdin failed: %s", exc)

        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Tool server pid=%s did not exit in %ss, killing it", process.pid, timeout)
            process.kill()
            process.wait()

        if self._reader is not None:
            self._reader.join(timeout=1.0)
        if process.stdout and not process.stdout.closed:
            process.stdout.close()

        logger.info("Tool server pid=%s exited with %s", process.pid, process.returncode)
        return process.returncode

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    # ── Lines ─────────────────────────────────────────────────────────────

    def send(self, line: str) -> None:
        """Write ``line`` plus exactly one newline and flush."""
        if "\n" in line or "\r" in line:
            raise ValueError("a protocol line must not contain line breaks")
        process = self._process
        if process is None or process.stdin is None or process.stdin.closed:
            raise TransportClosedError("Tool server input is closed")

        try:
            process.stdin.write(line.encode("utf-8") + b"\n")
            process.stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            raise TransportClosedError(f"Tool server pipe broken: {exc}") from exc

    def receive_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Return the next line without its terminator, or ``None`` at end of stream.

        Blocks until a line arrives unless ``timeout`` is given, in which case
        ``TransportTimeoutError`` is raised when it expires.
        """
        if self._process is None:
            raise TransportClosedError("Transport was never started")
        if self._eof:
            return None

        try:
            raw = self._lines.get(timeout=timeout)
        except queue.Empty:
            raise TransportTimeoutError(f"No reply from tool server within {timeout}s")

        if raw is _EOF:
            self._eof = True
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    # ── Context manager ───────────────────────────────────────────────────

    def __enter__(self) -> "ProcessTransport":
        if self._process is None:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()
