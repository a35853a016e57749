"""Shell command execution for block updates, tails and clicks."""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import Optional, Set

from .config import DEFAULT_SHELL

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a command run to completion."""
    ok: bool
    output: str = ""
    returncode: Optional[int] = None
    error: Optional[str] = None


class CommandRunner:
    """Runs commands through ``<shell> -c``.

    Children never inherit stdin: in i3bar mode stdin carries click events.
    """

    def __init__(self, shell: str = DEFAULT_SHELL):
        self.shell = shell
        self._background: Set[asyncio.Task] = set()

    async def run(self, command: str) -> CommandResult:
        """Run a command to completion and capture trimmed stdout.

        Args:
            command: Shell command line

        Returns:
            CommandResult; ok is False on launch failure or non-zero exit
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to launch {command!r}: {e}")
            return CommandResult(ok=False, error=str(e))

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            await self.terminate(proc)
            raise

        output = stdout.decode(errors="replace").strip()
        if proc.returncode != 0:
            logger.error(f"Command finished with error: {command!r} exited with {proc.returncode}")
            return CommandResult(ok=False, output=output, returncode=proc.returncode,
                                 error=f"exit status {proc.returncode}")

        return CommandResult(ok=True, output=output, returncode=0)

    async def open_stream(self, command: str) -> asyncio.subprocess.Process:
        """Launch a long-lived command with its stdout piped for line reading.

        Raises:
            OSError: If the shell cannot be launched
        """
        return await asyncio.create_subprocess_exec(
            self.shell, "-c", command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            start_new_session=True,
        )

    def launch(self, command: str) -> asyncio.Task:
        """Fire a command in the background; failures are only logged.

        Returns:
            The task waiting on the command (held until it completes)
        """
        task = asyncio.create_task(self._launch_detached(command))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _launch_detached(self, command: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to launch {command!r}: {e}")
            return

        logger.info(f"Launched: {command}")
        returncode = await proc.wait()
        if returncode != 0:
            logger.warning(f"Command finished with error: {command!r} exited with {returncode}")

    async def terminate(self, proc: asyncio.subprocess.Process, grace: float = 2.0) -> None:
        """Terminate a child's process group and reap it.

        Escalates to SIGKILL after ``grace`` seconds.
        """
        if proc.returncode is not None:
            return
        if not _signal_group(proc, signal.SIGTERM):
            await proc.wait()
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(f"Process {proc.pid} ignored SIGTERM, killing")
            _signal_group(proc, signal.SIGKILL)
            await proc.wait()


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> bool:
    """Signal the session a child leads; False if it is already gone."""
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        return False
    return True
