from __future__ import annotations

"""Shell command execution.

CONTRACT
- Inputs: Command (str -> shell=True, list -> shell=False), cwd, env,
  timeout, optional CancelToken
- Outputs (required):
  - CmdResult(returncode, stdout, stderr, elapsed_s, ...)
- Invariants:
  - stdout/stderr are kept in bounded tail buffers; dropped output is
    reported with a marker line, memory never grows past the limit
  - The child runs in its own session; timeout and cancellation terminate
    the whole process group (SIGTERM, then SIGKILL after a grace period)
  - Timeout -> returncode 124, cancellation -> returncode 130
- Failure:
  - Never raises for non-zero exit or launch failure; launch failures are
    reported as returncode=None with launch_error set
"""

import os
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from ..cancel import CancelToken

DEFAULT_MAX_OUTPUT_BYTES = 64 * 1024
TIMEOUT_EXIT_CODE = 124
CANCELLED_EXIT_CODE = 130

_CHUNK = 8192
_DRAIN_TIMEOUT_S = 2.0


def which(cmd: str, path: str | None = None) -> str | None:
    search = path if path is not None else os.environ.get("PATH", "")
    for p in search.split(os.pathsep):
        if not p:
            continue
        candidate = Path(p) / cmd
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


class OutputBuffer:
    """Keeps the last `limit` bytes written to it."""

    def __init__(self, limit: int = DEFAULT_MAX_OUTPUT_BYTES) -> None:
        self.limit = max(0, limit)
        self.total = 0
        self.dropped = 0
        self._chunks: deque[bytes] = deque()
        self._size = 0
        self._lock = threading.Lock()

    def write(self, chunk: bytes) -> None:
        with self._lock:
            self.total += len(chunk)
            self._chunks.append(chunk)
            self._size += len(chunk)
            while self._size > self.limit:
                head = self._chunks[0]
                excess = self._size - self.limit
                if len(head) <= excess:
                    self._chunks.popleft()
                    self._size -= len(head)
                    self.dropped += len(head)
                else:
                    self._chunks[0] = head[excess:]
                    self._size -= excess
                    self.dropped += excess

    def getvalue(self) -> str:
        with self._lock:
            data = b"".join(self._chunks)
            dropped = self.dropped
        text = data.decode("utf-8", errors="replace")
        if dropped:
            return f"[... {dropped} bytes truncated ...]\n{text}"
        return text


@dataclass(frozen=True)
class CmdResult:
    cmd: str
    returncode: int | None
    stdout: str
    stderr: str
    elapsed_s: float
    stdout_bytes: int
    stderr_bytes: int
    timed_out: bool = False
    cancelled: bool = False
    launch_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not (self.timed_out or self.cancelled)


def _pump(stream: IO[bytes], buf: OutputBuffer) -> None:
    try:
        for chunk in iter(lambda: stream.read1(_CHUNK), b""):
            buf.write(chunk)
    except (OSError, ValueError):
        # Pipe closed underneath us after a forced kill.
        pass
    finally:
        stream.close()


def _signal_group(proc: subprocess.Popen, hard: bool) -> None:
    if os.name == "posix":
        sig = signal.SIGKILL if hard else signal.SIGTERM
        try:
            os.killpg(proc.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass
    elif proc.poll() is None:
        if hard:
            proc.kill()
        else:
            proc.terminate()


def _terminate(proc: subprocess.Popen, grace_s: float) -> None:
    _signal_group(proc, hard=False)
    try:
        proc.wait(timeout=grace_s)
    except subprocess.TimeoutExpired:
        _signal_group(proc, hard=True)
        proc.wait()


def run_cmd(
    cmd: str | list[str] | tuple[str, ...],
    cwd: Path,
    env: dict[str, str] | None = None,
    timeout_s: float | None = None,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    cancel: CancelToken | None = None,
    kill_grace_s: float = 5.0,
    poll_interval_s: float = 0.05,
) -> CmdResult:
    """Run a command, capturing bounded stdout/stderr.

    CONTRACT:
    - Accepts cmd as str (run with shell=True) or a sequence (shell=False).
    - env extends os.environ; None inherits it unchanged.
    - Never raises for non-zero exit; caller inspects the result.
    - A KeyboardInterrupt while waiting is treated as cancellation.
    """
    use_shell = isinstance(cmd, str)
    cmd_text = cmd if isinstance(cmd, str) else " ".join(cmd)
    argv = cmd if isinstance(cmd, str) else list(cmd)
    out_buf = OutputBuffer(max_output_bytes)
    err_buf = OutputBuffer(max_output_bytes)

    start_t = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            shell=use_shell,
            env=(os.environ | env) if env else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        return CmdResult(
            cmd=cmd_text,
            returncode=None,
            stdout="",
            stderr="",
            elapsed_s=time.monotonic() - start_t,
            stdout_bytes=0,
            stderr_bytes=0,
            launch_error=f"{type(e).__name__}: {e}",
        )

    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, out_buf), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, err_buf), daemon=True),
    ]
    for t in readers:
        t.start()

    timed_out = False
    cancelled = False
    try:
        while True:
            try:
                proc.wait(timeout=poll_interval_s)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.is_set():
                cancelled = True
                _terminate(proc, kill_grace_s)
                break
            if timeout_s is not None and time.monotonic() - start_t >= timeout_s:
                timed_out = True
                _terminate(proc, kill_grace_s)
                break
    except KeyboardInterrupt:
        cancelled = True
        if cancel is not None:
            cancel.cancel("keyboard interrupt")
        _terminate(proc, kill_grace_s)

    for t in readers:
        t.join(timeout=_DRAIN_TIMEOUT_S)
    if any(t.is_alive() for t in readers):
        # Background children still hold the pipes open.
        _signal_group(proc, hard=True)
        for t in readers:
            t.join(timeout=_DRAIN_TIMEOUT_S)

    elapsed = time.monotonic() - start_t
    if timed_out:
        rc = TIMEOUT_EXIT_CODE
        err_buf.write(f"\nTimeout expired after {timeout_s}s.\n".encode())
    elif cancelled:
        rc = CANCELLED_EXIT_CODE
    else:
        rc = proc.returncode

    return CmdResult(
        cmd=cmd_text,
        returncode=rc,
        stdout=out_buf.getvalue(),
        stderr=err_buf.getvalue(),
        elapsed_s=elapsed,
        stdout_bytes=out_buf.total,
        stderr_bytes=err_buf.total,
        timed_out=timed_out,
        cancelled=cancelled,
    )
