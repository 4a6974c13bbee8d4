"""Lifecycle hooks run through the writer's command operation."""

import asyncio
from typing import Optional

from tablepipe.core.errors import HookError
from tablepipe.logging import get_logger
from tablepipe.writers.base import DataWriter

logger = get_logger(__name__)


async def run_hook(
    writer: DataWriter,
    name: str,
    command: Optional[str],
    timeout: float,
    fatal: bool = True,
) -> bool:
    """Execute a hook command against the writer with a time limit.

    Args:
    ----
        writer: Target whose ``execute_command`` runs the hook
        name: Hook name used in logs and errors ("pre", "post", ...)
        command: Free-form command; nothing happens when empty
        timeout: Seconds the hook may run
        fatal: Raise ``HookError`` on failure instead of logging it

    Returns:
    -------
        True if the hook ran successfully, False if it was skipped or failed

    """
    if not command or not command.strip():
        return False

    logger.info(f"Running {name} hook")
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, writer.execute_command, command)
    try:
        await asyncio.wait_for(asyncio.shield(future), timeout)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        raise
    except asyncio.TimeoutError as e:
        await _stop_hook(writer, name, future)
        message = f"timed out after {timeout:g}s"
        if fatal:
            raise HookError(name, command, message) from e
        logger.error(f"{name} hook {message}")
        return False
    except Exception as e:
        if fatal:
            raise HookError(name, command, str(e)) from e
        logger.error(f"{name} hook failed: {e}")
        return False
    logger.debug(f"{name} hook completed")
    return True


async def _stop_hook(writer: DataWriter, name: str, future: "asyncio.Future[None]") -> None:
    """Interrupt a timed-out hook and wait until its worker call has returned.

    The writer's connection must not be reused or closed while a worker
    thread is still running a statement on it.
    """
    logger.warning(f"{name} hook exceeded its time limit, interrupting")
    try:
        writer.interrupt()
    except Exception as e:
        logger.warning(f"Could not interrupt {name} hook: {e}")
    await asyncio.wait([future])
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"Interrupted {name} hook ended with: {future.exception()}")
