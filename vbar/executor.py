"""
Per-block background execution.

A BlockExecutor keeps one block's text current, either by running its command
now and then every ``interval`` seconds, or by tailing a long-lived command
line by line. Text is only published through the presentation dispatcher.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Set

from .presentation import PresentationDispatcher
from .runner import CommandRunner

if TYPE_CHECKING:
    from .registry import Block

logger = logging.getLogger(__name__)


class BlockExecutor:
    """Owns the timer or tail stream of a single block."""

    def __init__(
        self,
        block: "Block",
        runner: CommandRunner,
        presentation: PresentationDispatcher,
        error_text: str = "ERROR",
    ):
        self.block = block
        self.runner = runner
        self.presentation = presentation
        self.error_text = error_text
        self._task: Optional[asyncio.Task] = None
        self._runs: Set[asyncio.Task] = set()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin polling or tailing according to the block's commands."""
        if self.block.command:
            self._task = asyncio.create_task(self._poll(), name=f"poll:{self.block.name}")
        elif self.block.tail_command:
            self._task = asyncio.create_task(self._tail(), name=f"tail:{self.block.name}")

    def publish(self, text: str) -> None:
        """Set the block's text and forward it to the sink; no-op once stopped."""
        if self._stopped:
            return
        self.block.text = text
        self.presentation.set_text(self.block.name, text)

    async def refresh(self) -> None:
        """Run the block's command once and publish the outcome."""
        command = self.block.command
        if not command:
            return

        result = await self.runner.run(command)
        if result.ok:
            self.publish(result.output)
        else:
            logger.error(f"Block {self.block.name}: command failed ({result.error})")
            self.publish(self.error_text)

    def _spawn_refresh(self) -> asyncio.Task:
        task = asyncio.create_task(self.refresh())
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _poll(self) -> None:
        self._spawn_refresh()

        interval = self.block.interval
        if interval <= 0:
            return

        # Fixed-rate schedule; a slow run does not delay the next tick.
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            self._spawn_refresh()
            next_tick += interval

    async def _tail(self) -> None:
        command = self.block.tail_command
        try:
            proc = await self.runner.open_stream(command)
        except OSError as e:
            logger.error(f"Block {self.block.name}: couldn't start {command!r}: {e}")
            self.publish(self.error_text)
            return

        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                self.publish(line.decode(errors="replace").strip())
            # The command may close stdout and keep running.
            returncode = await proc.wait()
        except ValueError as e:
            logger.error(f"Block {self.block.name}: couldn't read from command stdout: {e}")
            self.publish(self.error_text)
            await self.runner.terminate(proc)
            return
        except asyncio.CancelledError:
            await self.runner.terminate(proc)
            raise

        if returncode != 0:
            logger.error(f"Block {self.block.name}: tail command exited with {returncode}")
            self.publish(self.error_text)
        else:
            logger.info(f"Block {self.block.name}: tail command finished")

    def click(self) -> None:
        """Fire the block's click command, if any."""
        if self.block.click_command:
            self.runner.launch(self.block.click_command)

    def activate_menu_item(self, index: int) -> None:
        """Fire the command bound to menu entry ``index``."""
        try:
            item = self.block.menu_items[index]
        except IndexError:
            logger.warning(f"Block {self.block.name}: no menu item {index}")
            return
        self.runner.launch(item.command)

    async def stop(self) -> None:
        """Cancel the timer or stream and any in-flight runs, then wait for them."""
        self._stopped = True
        tasks = [t for t in (self._task, *self._runs) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        logger.debug(f"Block {self.block.name}: executor stopped")
