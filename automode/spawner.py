"""
JSONL Process Spawner
=====================

Launches a CLI subprocess and yields each line of its stdout parsed as JSON.

Behaviour:
- stdout is read in chunks; partial lines are buffered across chunk boundaries
- empty lines are ignored, malformed lines are logged and skipped
- stderr is drained concurrently and attached to ProcessExitError on failure
- exit code 0 ends the sequence normally
- setting the abort event kills the child and raises ProcessAbortedError
- closing the generator early (or cancelling the consuming task) kills the child

Each call owns its own process and buffers, so any number of spawns can run
concurrently on the same event loop.

Usage:
    config = SubprocessConfig(command="gemini", args=["--output-format", "stream-json", "hi"])
    async for event in spawn_jsonl_process(config):
        print(event["type"])
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

_logger = logging.getLogger(__name__)

# Bytes requested per stdout read
READ_CHUNK_SIZE = 64 * 1024

# Seconds to wait after SIGTERM before sending SIGKILL
TERMINATE_GRACE_SECONDS = 5.0

# Longest excerpt of a malformed line written to the log
MAX_LOGGED_LINE_LENGTH = 200


# =============================================================================
# Errors
# =============================================================================

class ProcessExitError(Exception):
    """
    Raised when the subprocess exits with a non-zero code.

    Attributes:
        stderr: Everything the process wrote to stderr
        exit_code: Process exit code (None when it was killed by us)
    """

    def __init__(self, stderr: str, exit_code: Optional[int], message: Optional[str] = None):
        self.stderr = stderr
        self.exit_code = exit_code
        if message is None:
            message = f"Process exited with code {exit_code}"
            if stderr:
                message += f": {stderr[:500]}"
        super().__init__(message)


class ProcessTimeoutError(ProcessExitError):
    """Raised when the subprocess produced no output within the inactivity timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            stderr=f"timeout: no output for {timeout_seconds}s",
            exit_code=None,
            message=f"Process produced no output for {timeout_seconds}s and was killed",
        )


class ProcessAbortedError(Exception):
    """
    Raised when the abort event was set while the process was running.

    Deliberately not a ProcessExitError: callers special-case aborts and must
    never report them as feature failures.
    """

    def __init__(self, message: str = "Process aborted"):
        super().__init__(message)


def is_abort_error(error: BaseException) -> bool:
    """Return True for cancellation conditions that are not failures."""
    return isinstance(error, (ProcessAbortedError, asyncio.CancelledError))


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class SubprocessConfig:
    """
    Parameters for one JSONL subprocess.

    Attributes:
        command: Executable path or name
        args: Arguments passed after the command
        cwd: Working directory for the child
        env: Overrides merged on top of os.environ
        stdin_data: Text written to stdin, after which stdin is closed
        abort_event: Set this event to terminate the child
        timeout_seconds: Kill the child after this long without stdout output
    """
    command: str
    args: list[str] = field(default_factory=list)
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)
    stdin_data: Optional[str] = None
    abort_event: Optional[asyncio.Event] = None
    timeout_seconds: Optional[float] = None


# =============================================================================
# Helpers
# =============================================================================

_SKIP = object()


def _parse_line(raw: bytes) -> Any:
    """Parse one stdout line, returning _SKIP for blank or malformed lines."""
    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        return _SKIP
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        _logger.warning(
            "Skipping malformed JSONL line (%s): %s",
            e.msg, text[:MAX_LOGGED_LINE_LENGTH],
        )
        return _SKIP


async def _drain(stream: Optional[asyncio.StreamReader]) -> str:
    if stream is None:
        return ""
    data = await stream.read()
    return data.decode("utf-8", errors="replace")


async def _write_stdin(process: asyncio.subprocess.Process, data: str) -> None:
    if process.stdin is None:
        return
    try:
        process.stdin.write(data.encode("utf-8"))
        await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        _logger.debug("Process closed stdin before the payload was written")
    finally:
        process.stdin.close()


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Stop the child: SIGTERM, then SIGKILL if it does not exit in time."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
    except asyncio.TimeoutError:
        _logger.warning("Process %s ignored SIGTERM, killing", process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


async def _read_chunk(
    stream: asyncio.StreamReader,
    abort_task: Optional[asyncio.Task],
    timeout_seconds: Optional[float],
) -> bytes:
    """Read the next stdout chunk, racing it against abort and inactivity."""
    read_task = asyncio.ensure_future(stream.read(READ_CHUNK_SIZE))
    waiters = {read_task}
    if abort_task is not None:
        waiters.add(abort_task)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        read_task.cancel()
        raise

    if abort_task is not None and abort_task in done:
        read_task.cancel()
        raise ProcessAbortedError()
    if read_task in done:
        return read_task.result()

    read_task.cancel()
    raise ProcessTimeoutError(timeout_seconds)


# =============================================================================
# Spawner
# =============================================================================

async def spawn_jsonl_process(config: SubprocessConfig) -> AsyncIterator[Any]:
    """
    Spawn a subprocess and yield parsed JSON values from its stdout.

    Raises:
        ProcessExitError: the process exited with a non-zero code
        ProcessTimeoutError: the inactivity timeout elapsed
        ProcessAbortedError: config.abort_event was set
    """
    if config.abort_event is not None and config.abort_event.is_set():
        raise ProcessAbortedError()

    env = {**os.environ, **config.env}
    process = await asyncio.create_subprocess_exec(
        config.command,
        *config.args,
        stdin=asyncio.subprocess.PIPE if config.stdin_data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=config.cwd,
        env=env,
    )
    _logger.debug(
        "Spawned %s (pid=%s) with %d args in %s",
        config.command, process.pid, len(config.args), config.cwd,
    )

    stderr_task = asyncio.create_task(_drain(process.stderr))
    stdin_task = None
    if config.stdin_data is not None:
        stdin_task = asyncio.create_task(_write_stdin(process, config.stdin_data))
    abort_task = None
    if config.abort_event is not None:
        abort_task = asyncio.create_task(config.abort_event.wait())

    try:
        buffer = b""
        while True:
            chunk = await _read_chunk(process.stdout, abort_task, config.timeout_seconds)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = buffer.split(b"\n")
            for line in lines:
                parsed = _parse_line(line)
                if parsed is not _SKIP:
                    yield parsed

        # Final line without a trailing newline
        parsed = _parse_line(buffer)
        if parsed is not _SKIP:
            yield parsed

        exit_code = await process.wait()
        stderr = await stderr_task

        if exit_code != 0:
            _logger.debug("Process %s exited with code %s", process.pid, exit_code)
            raise ProcessExitError(stderr.strip(), exit_code)
    finally:
        if process.returncode is None:
            await _terminate(process)
        for task in (stdin_task, abort_task, stderr_task):
            if task is not None and not task.done():
                task.cancel()
