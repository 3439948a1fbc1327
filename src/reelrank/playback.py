"""Playback and feedback collaborator.

The session hands one candidate path at a time to a feedback provider and
gets back exactly one :class:`FeedbackResult`.  The bundled provider drives
VLC through its HTTP interface:

- VLC is started with ``-I http`` on a free localhost port and a random
  password, playing only the candidate.
- ``/requests/status.json`` is polled until it reports a filename, which
  must match the candidate's.
- The user then answers with the player controls: **stop** keeps the file
  (Positive) and **pause** rejects it (Negative).
- The VLC process is killed when the request finishes, whether it ended in
  a decision, an error or a timeout.

:class:`FeedbackChannel` runs a provider on a background thread and
delivers results through a FIFO queue in the order they were produced.
"""

from __future__ import annotations

import queue
import secrets
import socket
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import requests

from . import tuning
from .entry import Label


class FeedbackError(RuntimeError):
    """The feedback collaborator failed (could not start, lost, mismatched)."""


class Outcome(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    ERROR = "error"
    TIMEOUT = "timeout"

    @property
    def label(self) -> Optional[Label]:
        if self is Outcome.POSITIVE:
            return Label.POSITIVE
        if self is Outcome.NEGATIVE:
            return Label.NEGATIVE
        return None


@dataclass(frozen=True)
class FeedbackResult:
    path: Path
    outcome: Outcome
    message: str = ""

    @property
    def is_decision(self) -> bool:
        return self.outcome.label is not None


class FeedbackProvider(Protocol):
    def request(self, path: Path) -> FeedbackResult:
        ...

    def cancel(self) -> None:
        ...

    def reset(self) -> None:
        ...


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


def _status_filename(status: Dict[str, Any]) -> Optional[str]:
    info = status.get("information") or {}
    meta = (info.get("category") or {}).get("meta") or {}
    name = meta.get("filename")
    return str(name) if name else None


class VlcProcess:
    """One VLC instance with its HTTP interface enabled.

    Use as a context manager; the process is killed on exit.
    """

    def __init__(
        self,
        path: Path,
        executable: str = "vlc",
        fullscreen: bool = False,
        http_timeout: float = tuning.FEEDBACK_PARAMS["http_timeout_seconds"],
        session: Optional[requests.Session] = None,
    ) -> None:
        self.path = Path(path)
        self.executable = executable
        self.fullscreen = fullscreen
        self.http_timeout = float(http_timeout)
        self.session = session or requests.Session()
        self.port = _free_port()
        self.password = secrets.token_urlsafe(12)
        self.status_url = f"http://localhost:{self.port}/requests/status.json"
        self._proc: Optional[subprocess.Popen] = None

    def command(self) -> List[str]:
        cmd = [
            self.executable,
            "-I",
            "http",
            "--no-random",
            "--no-loop",
            "--repeat",
            "--no-play-and-exit",
            "--http-host",
            "localhost",
            "--http-password",
            self.password,
            "--http-port",
            str(self.port),
        ]
        if self.fullscreen:
            cmd.append("--fullscreen")
        cmd.append(str(self.path))
        return cmd

    def __enter__(self) -> "VlcProcess":
        try:
            self._proc = subprocess.Popen(
                self.command(),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise FeedbackError(f"Cannot start {self.executable}: {exc}") from exc
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        proc = self._proc
        self._proc = None
        if proc is None:
            return
        if proc.poll() is None:
            proc.kill()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            pass

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def status(self) -> Dict[str, Any]:
        try:
            response = self.session.get(
                self.status_url,
                auth=("", self.password),
                timeout=self.http_timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise FeedbackError(f"VLC not responding: {exc}") from exc


@dataclass
class VlcFeedback:
    """Feedback provider that asks the user through VLC."""

    executable: str = "vlc"
    fullscreen: bool = False
    startup_timeout: float = tuning.FEEDBACK_PARAMS["startup_timeout_seconds"]
    decision_timeout: float = tuning.FEEDBACK_PARAMS["decision_timeout_seconds"]
    poll_interval: float = tuning.FEEDBACK_PARAMS["poll_interval_ms"] / 1000.0
    http_timeout: float = tuning.FEEDBACK_PARAMS["http_timeout_seconds"]
    session: requests.Session = field(default_factory=requests.Session)
    _cancelled: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def cancel(self) -> None:
        """Abort any wait in progress; later requests fail immediately."""
        self._cancelled.set()

    def reset(self) -> None:
        """Accept requests again after a cancel."""
        self._cancelled.clear()

    def _sleep(self) -> None:
        if self._cancelled.wait(self.poll_interval):
            raise FeedbackError("cancelled")

    def _open(self, path: Path) -> VlcProcess:
        return VlcProcess(
            path,
            executable=self.executable,
            fullscreen=self.fullscreen,
            http_timeout=self.http_timeout,
            session=self.session,
        )

    def _wait_for_playback(self, proc: VlcProcess, expected: str) -> None:
        deadline = time.monotonic() + self.startup_timeout
        last_error = ""
        while time.monotonic() < deadline:
            self._sleep()
            if not proc.running:
                raise FeedbackError("VLC exited before playback started")
            try:
                status = proc.status()
            except FeedbackError as exc:
                last_error = str(exc)
                continue
            name = _status_filename(status)
            if name is None:
                continue
            if name != expected:
                raise FeedbackError(f"Filename mismatch: expected {expected!r}, got {name!r}")
            return
        raise TimeoutError(f"VLC did not report playback within {self.startup_timeout:g}s {last_error}".rstrip())

    def _wait_for_decision(self, proc: VlcProcess) -> Outcome:
        deadline = time.monotonic() + self.decision_timeout if self.decision_timeout > 0 else None
        while deadline is None or time.monotonic() < deadline:
            self._sleep()
            state = proc.status().get("state")
            if state == "stopped":
                return Outcome.POSITIVE
            if state == "paused":
                return Outcome.NEGATIVE
        raise TimeoutError(f"No decision within {self.decision_timeout:g}s")

    def request(self, path: Path) -> FeedbackResult:
        path = Path(path)
        try:
            with self._open(path) as proc:
                self._wait_for_playback(proc, path.name)
                return FeedbackResult(path, self._wait_for_decision(proc))
        except TimeoutError as exc:
            return FeedbackResult(path, Outcome.TIMEOUT, str(exc))
        except FeedbackError as exc:
            return FeedbackResult(path, Outcome.ERROR, str(exc))


_STOP = object()


class FeedbackChannel:
    """Run a provider on a worker thread; results arrive in request order.

    The worker owns the provider for its whole lifetime.  Exactly one result
    is emitted per submitted path.  Leaving the ``with`` block stops the
    worker after the request in progress.  Entering it resets the provider, so a
    provider cancelled by an earlier channel can serve a new one.
    """

    def __init__(self, provider: FeedbackProvider) -> None:
        self.provider = provider
        self._requests: "queue.Queue[Any]" = queue.Queue()
        self._results: "queue.Queue[FeedbackResult]" = queue.Queue()
        self._thread = threading.Thread(target=self._worker, name="reelrank-feedback", daemon=True)

    def __enter__(self) -> "FeedbackChannel":
        self.provider.reset()
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._thread.is_alive():
            self._requests.put(_STOP)
            self.provider.cancel()
            self._thread.join()

    def _worker(self) -> None:
        while True:
            item = self._requests.get()
            if item is _STOP:
                return
            try:
                result = self.provider.request(item)
            except Exception as exc:
                result = FeedbackResult(Path(item), Outcome.ERROR, f"{type(exc).__name__}: {exc}")
            self._results.put(result)

    def submit(self, path: Path) -> None:
        self._requests.put(Path(path))

    def receive(self, timeout: Optional[float] = None) -> Optional[FeedbackResult]:
        """Next result in emission order, or ``None`` if ``timeout`` expires."""
        try:
            return self._results.get(timeout=timeout)
        except queue.Empty:
            return None
