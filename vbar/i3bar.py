"""swaybar/i3bar protocol presentation sink.

Writes the block row as JSON status lines on stdout and reads click events
from stdin, so ``vbar start`` can be used as swaybar's ``status_command``.

Protocol: https://i3wm.org/docs/i3bar-protocol.html
"""

import asyncio
import json
import logging
import sys
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TextIO

from .config import DEFAULT_MENU_COMMAND, DEFAULT_SHELL
from .models import ClickEvent, Position
from .presentation import ClickCallback, Placement, PresentationSink, Side
from .runner import CommandRunner
from .stylesheet import Stylesheet

logger = logging.getLogger(__name__)

_DEFAULT_ALIGN = {
    Position.LEFT: "left",
    Position.CENTER: "center",
    Position.RIGHT: "right",
}


@dataclass
class Cell:
    """One block as laid out in the status line."""
    name: str
    text: str
    position: Position
    has_menu: bool = False


class I3barSink(PresentationSink):
    """Presentation sink speaking the i3bar JSON protocol."""

    def __init__(
        self,
        stdout: Optional[TextIO] = None,
        stdin: Optional[TextIO] = None,
        stylesheet: Optional[Stylesheet] = None,
        menu_command: str = DEFAULT_MENU_COMMAND,
        shell: str = DEFAULT_SHELL,
    ):
        self.stdout = stdout or sys.stdout
        self.stdin = stdin or sys.stdin
        self.stylesheet = stylesheet or Stylesheet()
        self.menu_command = menu_command
        self.shell = shell
        self.runner = CommandRunner(shell)
        self.cells: List[Cell] = []
        self._dirty = True
        self._header_sent = False
        self._running = False
        self._input_thread: Optional[threading.Thread] = None

    def _index(self, name: str) -> Optional[int]:
        for i, cell in enumerate(self.cells):
            if cell.name == name:
                return i
        return None

    def create_block(self, name: str, text: str, position: Position, placement: Placement) -> None:
        cell = Cell(name=name, text=text, position=position)
        anchor = self._index(placement.anchor) if placement.anchor else None

        if anchor is None:
            if placement.anchor:
                logger.warning(f"Anchor {placement.anchor} not found, appending {name}")
            self.cells.append(cell)
        elif placement.side == Side.BEFORE:
            self.cells.insert(anchor, cell)
        else:
            self.cells.insert(anchor + 1, cell)
        self._dirty = True

    def set_text(self, name: str, text: str) -> None:
        index = self._index(name)
        if index is None:
            logger.debug(f"Dropping text for unknown block {name}")
            return
        if self.cells[index].text != text:
            self.cells[index].text = text
            self._dirty = True

    def remove_block(self, name: str) -> None:
        index = self._index(name)
        if index is not None:
            del self.cells[index]
            self._dirty = True

    def add_menu_item(self, name: str, label: str) -> None:
        index = self._index(name)
        if index is not None:
            self.cells[index].has_menu = True

    def add_css(self, css_class: str, css: str) -> None:
        self.stylesheet.add(css_class, css)
        self._dirty = True

    def render(self) -> List[Dict[str, Any]]:
        """Current status line as i3bar block objects."""
        blocks = []
        for cell in self.cells:
            block: Dict[str, Any] = {
                "name": cell.name,
                "full_text": cell.text,
                "markup": "none",
                "align": _DEFAULT_ALIGN[cell.position],
            }
            block.update(self.stylesheet.for_block(cell.name))
            blocks.append(block)
        return blocks

    def _print_header(self) -> None:
        """Print i3bar protocol header."""
        header = {"version": 1, "click_events": True}
        self.stdout.write(json.dumps(header) + "\n")
        self.stdout.write("[\n")  # Start infinite array
        self._header_sent = True

    def flush(self) -> None:
        if not self._dirty:
            return
        if not self._header_sent:
            self._print_header()
        self.stdout.write(json.dumps(self.render()) + ",\n")
        self.stdout.flush()
        self._dirty = False

    def close(self) -> None:
        if self._header_sent:
            self.stdout.write("]\n")  # End infinite array
            self.stdout.flush()

    def start_input(self, loop: asyncio.AbstractEventLoop, on_click: ClickCallback) -> None:
        """Listen for click events from stdin in a separate thread."""
        self._running = True
        self._input_thread = threading.Thread(
            target=self._click_event_listener, args=(loop, on_click),
            name="i3bar-clicks", daemon=True,
        )
        self._input_thread.start()

    def stop_input(self) -> None:
        self._running = False

    def _click_event_listener(self, loop: asyncio.AbstractEventLoop, on_click: ClickCallback) -> None:
        logger.info("Click event listener started")
        while self._running:
            line = self.stdin.readline()
            if not line:
                break

            # Skip array start/end markers
            line = line.strip().lstrip(",").rstrip(",")
            if line in ("", "[", "]"):
                continue

            try:
                event = ClickEvent.from_json(json.loads(line))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Failed to parse click event: {e}")
                continue

            if loop.is_closed():
                break
            loop.call_soon_threadsafe(on_click, event.name, event.button)
        logger.info("Click event listener stopped")

    async def choose_menu_item(self, name: str, labels: List[str]) -> Optional[int]:
        """Show the menu through a dmenu-style picker.

        Labels are written one per line on the picker's stdin; the selected
        line is read back from its stdout.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", self.menu_command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to launch menu picker {self.menu_command!r}: {e}")
            return None

        try:
            stdout, _ = await proc.communicate("\n".join(labels).encode())
        except asyncio.CancelledError:
            await self.runner.terminate(proc)
            raise
        choice = stdout.decode(errors="replace").strip()
        if proc.returncode != 0 or not choice:
            logger.debug(f"Menu for {name} dismissed")
            return None

        try:
            return labels.index(choice)
        except ValueError:
            logger.warning(f"Menu picker returned unknown entry {choice!r} for {name}")
            return None
