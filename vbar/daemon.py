"""
vbar bar process.

Owns the control server, the block registry, the presentation loop and the
sink; runs the user's configuration script once the socket is listening and
keeps running until SIGINT/SIGTERM.
"""

import asyncio
import logging
import os
import shlex
import signal
from typing import Optional, Set

from .config import SOCKET_ENV, Settings
from .i3bar import I3barSink
from .ipc_server import ControlServer
from .presentation import PresentationDispatcher, PresentationSink
from .registry import BlockRegistry
from .runner import CommandRunner

logger = logging.getLogger(__name__)


class BarDaemon:
    """Main bar process."""

    def __init__(self, settings: Settings, sink: Optional[PresentationSink] = None):
        """
        Initialize bar daemon.

        Args:
            settings: Resolved runtime configuration
            sink: Rendering backend (defaults to the i3bar protocol on stdio)
        """
        self.settings = settings
        self.sink = sink or I3barSink(menu_command=settings.menu_command, shell=settings.shell)
        self.runner = CommandRunner(settings.shell)
        self.presentation = PresentationDispatcher(self.sink)
        self.registry = BlockRegistry(self.presentation, self.runner, settings.error_text)
        self.server = ControlServer(
            self.registry,
            self.presentation,
            settings.socket_path,
            pid_path=settings.pid_path,
            probe_timeout=settings.probe_timeout,
        )
        self.shutdown_event = asyncio.Event()
        self.running = False
        self._config_task: Optional[asyncio.Task] = None
        self._menus: Set[asyncio.Task] = set()
        self._signals_installed = False

    async def start(self) -> None:
        """Claim the socket, start presenting and run the configuration script.

        Raises:
            EndpointInUseError: If another bar owns the socket
        """
        logger.info("Starting vbar")
        loop = asyncio.get_running_loop()

        await self.server.start()
        self.running = True

        self.presentation.start()
        # Emit the header and an empty row before any block exists
        self.presentation.submit("flush")
        self.sink.start_input(loop, self._on_click)

        self._config_task = asyncio.create_task(self.run_config_script(), name="config-script")
        logger.info("vbar started successfully")

    async def run(self) -> None:
        """Start, then serve until a shutdown signal arrives."""
        self.setup_signal_handlers()
        try:
            await self.start()
            await self.shutdown_event.wait()
        finally:
            await self.shutdown()
            self.remove_signal_handlers()

    async def run_config_script(self) -> None:
        """Run the user's configuration script, if there is one."""
        script = self.settings.config_script
        if script is None:
            return
        if not script.is_file():
            logger.info(f"No configuration script at {script}")
            return

        # Scripts call back into this bar through vbar subcommands
        os.environ[SOCKET_ENV] = str(self.settings.socket_path)

        if os.access(script, os.X_OK):
            command = shlex.quote(str(script))
        else:
            command = f"{shlex.quote(self.settings.shell)} {shlex.quote(str(script))}"

        logger.info(f"Running configuration script {script}")
        result = await self.runner.run(command)
        if not result.ok:
            logger.error(f"Configuration script {script} failed: {result.error}")
        else:
            logger.info(f"Configuration script finished, {len(self.registry)} blocks")

    def _on_click(self, name: str, button: int) -> None:
        """Route a click from the sink to the block's command and menu."""
        block = self.registry.find_block(name)
        if block is None or block.executor is None:
            logger.debug(f"Click on unknown block {name}")
            return

        logger.debug(f"Click on {name} (button {button})")
        block.executor.click()

        if block.has_menu:
            task = asyncio.create_task(self._show_menu(name), name=f"menu:{name}")
            self._menus.add(task)
            task.add_done_callback(self._menus.discard)

    async def _show_menu(self, name: str) -> None:
        block = self.registry.find_block(name)
        if block is None:
            return
        labels = [item.label for item in block.menu_items]
        index = await self.sink.choose_menu_item(name, labels)
        if index is None:
            return

        # The block may have been removed while the menu was open
        block = self.registry.find_block(name)
        if block is not None and block.executor is not None:
            block.executor.activate_menu_item(index)

    async def shutdown(self) -> None:
        """Stop serving, cancel block work, drain the presentation loop, release the socket."""
        if not self.running:
            # Startup failed before anything needed stopping
            await self.server.close()
            return
        self.running = False
        logger.info("Shutting down vbar")

        await self.server.close()

        pending = [t for t in (self._config_task, *self._menus) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self.registry.shutdown()
        self.sink.stop_input()
        await self.presentation.stop()
        self.sink.close()
        self.server.release()

        logger.info("vbar stopped")

    def setup_signal_handlers(self) -> None:
        """Set shutdown_event on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info(f"Received {sig.name}, shutting down")
            self.shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)
        self._signals_installed = True

    def remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        self._signals_installed = False


async def run_bar(settings: Settings, sink: Optional[PresentationSink] = None) -> None:
    """Run a bar until it is told to stop."""
    daemon = BarDaemon(settings, sink)
    await daemon.run()
