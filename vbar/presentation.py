"""
Presentation sink interface and the dispatcher that owns all calls into it.

Sinks are not thread- or task-safe. Background work never calls a sink
directly: it enqueues on the PresentationDispatcher, whose single consumer
task (the presentation loop) applies calls in FIFO order and flushes the sink
once per drained batch.
"""

import abc
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from .models import Position

logger = logging.getLogger(__name__)


class Side(str, Enum):
    """Where a new widget goes relative to its anchor."""
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class Placement:
    """Widget placement; no anchor means the first widget of an empty bar."""
    anchor: Optional[str] = None
    side: Side = Side.AFTER


ClickCallback = Callable[[str, int], None]


class PresentationSink(abc.ABC):
    """Rendering backend driven by the presentation loop."""

    @abc.abstractmethod
    def create_block(self, name: str, text: str, position: Position, placement: Placement) -> None:
        """Create a block widget and attach it at ``placement``."""

    @abc.abstractmethod
    def set_text(self, name: str, text: str) -> None:
        """Replace a block's text."""

    @abc.abstractmethod
    def remove_block(self, name: str) -> None:
        """Detach and destroy a block widget."""

    @abc.abstractmethod
    def add_menu_item(self, name: str, label: str) -> None:
        """Append an entry to a block's menu, creating the menu if needed."""

    @abc.abstractmethod
    def add_css(self, css_class: str, css: str) -> None:
        """Add style declarations for a class."""

    def flush(self) -> None:
        """Push pending changes to the screen."""

    def start_input(self, loop: asyncio.AbstractEventLoop, on_click: ClickCallback) -> None:
        """Begin delivering user activations; ``on_click`` runs on ``loop``."""

    def stop_input(self) -> None:
        """Stop delivering user activations."""

    async def choose_menu_item(self, name: str, labels: List[str]) -> Optional[int]:
        """Pop up a block's menu and return the chosen index.

        Reads no sink state, so it may run outside the presentation loop.
        """
        return None

    def close(self) -> None:
        """Release the output once the presentation loop has ended."""


_STOP = object()

SinkCall = Tuple[Any, tuple]


class PresentationDispatcher:
    """Single-consumer queue in front of a PresentationSink."""

    def __init__(self, sink: PresentationSink):
        self.sink = sink
        self._queue: "asyncio.Queue[SinkCall]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

    def submit(self, method: str, *args: Any) -> None:
        """Enqueue ``sink.<method>(*args)``; must be called on the loop thread."""
        self._queue.put_nowait((method, args))

    def submit_threadsafe(self, method: str, *args: Any) -> None:
        """Enqueue from a thread other than the loop's."""
        if self._loop is None:
            raise RuntimeError("presentation loop is not running")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (method, args))

    def create_block(self, name: str, text: str, position: Position, placement: Placement) -> None:
        self.submit("create_block", name, text, position, placement)

    def set_text(self, name: str, text: str) -> None:
        self.submit("set_text", name, text)

    def remove_block(self, name: str) -> None:
        self.submit("remove_block", name)

    def add_menu_item(self, name: str, label: str) -> None:
        self.submit("add_menu_item", name, label)

    def add_css(self, css_class: str, css: str) -> None:
        self.submit("add_css", css_class, css)

    def start(self) -> asyncio.Task:
        """Start the presentation loop on the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self.run(), name="presentation-loop")
        return self._task

    async def run(self) -> None:
        """Drain the queue until stopped, flushing once per batch."""
        logger.debug("Presentation loop started")
        while True:
            item = await self._queue.get()
            stopping = self._apply(item)

            while not stopping and not self._queue.empty():
                stopping = self._apply(self._queue.get_nowait())

            self._flush()
            if stopping:
                break
        logger.debug("Presentation loop stopped")

    def _apply(self, item: SinkCall) -> bool:
        method, args = item
        try:
            if method is _STOP:
                return True
            getattr(self.sink, method)(*args)
        except Exception as e:
            logger.error(f"Presentation sink {method} failed: {e}", exc_info=True)
        finally:
            self._queue.task_done()
        return False

    def _flush(self) -> None:
        try:
            self.sink.flush()
        except Exception as e:
            logger.error(f"Presentation sink flush failed: {e}", exc_info=True)

    async def join(self) -> None:
        """Wait until every queued call has been applied."""
        await self._queue.join()

    async def stop(self) -> None:
        """Apply the remaining calls, then end the presentation loop."""
        if self._task is None:
            return
        self._queue.put_nowait((_STOP, ()))
        await self._task
        self._task = None
