"""
Bounded execution of the external measurement tools.

Each tool runs in its own session so that a timeout or shutdown kills the
whole process group, leaving neither orphans nor zombies behind.
"""

import asyncio
import json
import logging
import os
import signal
from typing import Optional, Sequence

from errors import ProcessCancelled, ProcessExecutionFailed, ProcessTimeout

logger = logging.getLogger(__name__)

# Seconds to wait for pipes to drain after SIGKILL
KILL_GRACE_SECONDS = 5.0

STDERR_DETAIL_LIMIT = 500


async def run_command(
    command: str,
    args: Sequence,
    timeout: float,
    cancel_event: Optional[asyncio.Event] = None,
) -> bytes:
    """
    Run ``command`` with ``args`` and return its stdout.

    Args:
        command: Executable name or path
        args: Arguments, converted with str()
        timeout: Deadline in seconds; the process is killed when it passes
        cancel_event: Optional process-wide shutdown signal; the process is
            killed if it fires first

    Raises:
        ProcessTimeout: the deadline passed
        ProcessCancelled: cancel_event fired
        ProcessExecutionFailed: the command could not start or exited non-zero
    """
    argv = [command, *[str(a) for a in args]]
    logger.debug(f"Running: {' '.join(argv)} (timeout={timeout:g}s)")

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        raise ProcessExecutionFailed(command, f"could not start: {e}") from e

    communicate = asyncio.ensure_future(proc.communicate())
    waiters = {communicate}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        await _kill(proc, communicate)
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if communicate not in done:
        await _kill(proc, communicate)
        if cancel_waiter is not None and cancel_waiter in done:
            logger.info(f"{command} (pid {proc.pid}) killed on shutdown")
            raise ProcessCancelled(command)
        logger.warning(f"{command} (pid {proc.pid}) exceeded {timeout:g}s, killed")
        raise ProcessTimeout(command, timeout, pid=proc.pid)

    stdout, stderr = communicate.result()
    if proc.returncode != 0:
        detail = _failure_detail(stdout, stderr)
        raise ProcessExecutionFailed(
            command,
            f"exit status {proc.returncode}" + (f": {detail}" if detail else ""),
            returncode=proc.returncode,
            stdout=stdout,
            stderr=stderr,
        )
    return stdout


def _failure_detail(stdout: bytes, stderr: bytes) -> str:
    """stderr of a failed run, or the "error" field of a JSON document on stdout."""
    detail = stderr.decode("utf-8", errors="replace").strip()
    if not detail and stdout:
        try:
            document = json.loads(stdout)
        except ValueError:
            document = None
        if isinstance(document, dict) and document.get("error"):
            detail = str(document["error"]).strip()
    return detail[:STDERR_DETAIL_LIMIT]


async def _kill(proc: asyncio.subprocess.Process, communicate: asyncio.Future) -> None:
    """Kill the process group and reap the child.

    The group is signalled even when the child already exited, since a
    grandchild can outlive it and keep the pipes open.
    """
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(communicate, timeout=KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        logger.error(f"pid {proc.pid} did not release its pipes after SIGKILL")
    except Exception as e:
        logger.debug(f"Discarding output of killed pid {proc.pid}: {e}")
    await proc.wait()
