"""Pytest configuration and fixtures for vbar tests."""

import asyncio
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Tuple

import pytest
import pytest_asyncio

from vbar.config import Settings
from vbar.ipc_server import ControlServer
from vbar.models import Position
from vbar.presentation import Placement, PresentationDispatcher, PresentationSink
from vbar.registry import BlockRegistry
from vbar.runner import CommandRunner

TEST_SHELL = "/bin/sh"


class RecordingSink(PresentationSink):
    """Sink that records every call instead of drawing anything."""

    def __init__(self):
        self.calls: List[Tuple] = []
        self.order: List[str] = []
        self.texts: Dict[str, str] = {}
        self.history: Dict[str, List[str]] = {}
        self.menus: Dict[str, List[str]] = {}
        self.css: List[Tuple[str, str]] = []
        self.flushes = 0
        self.closed = False
        self.input_started = False
        self.menu_choice: Optional[int] = None

    def create_block(self, name: str, text: str, position: Position, placement: Placement) -> None:
        self.calls.append(("create_block", name, text, position, placement))
        anchor = self.order.index(placement.anchor) if placement.anchor in self.order else None
        if anchor is None:
            self.order.append(name)
        elif placement.side.value == "before":
            self.order.insert(anchor, name)
        else:
            self.order.insert(anchor + 1, name)
        self.texts[name] = text
        self.history[name] = [text]

    def set_text(self, name: str, text: str) -> None:
        self.calls.append(("set_text", name, text))
        self.texts[name] = text
        self.history.setdefault(name, []).append(text)

    def remove_block(self, name: str) -> None:
        self.calls.append(("remove_block", name))
        self.order.remove(name)
        self.texts.pop(name, None)

    def add_menu_item(self, name: str, label: str) -> None:
        self.calls.append(("add_menu_item", name, label))
        self.menus.setdefault(name, []).append(label)

    def add_css(self, css_class: str, css: str) -> None:
        self.calls.append(("add_css", css_class, css))
        self.css.append((css_class, css))

    def flush(self) -> None:
        self.flushes += 1

    def start_input(self, loop, on_click) -> None:
        self.input_started = True
        self.on_click = on_click

    def stop_input(self) -> None:
        self.input_started = False

    async def choose_menu_item(self, name: str, labels: List[str]) -> Optional[int]:
        self.calls.append(("choose_menu_item", name, tuple(labels)))
        return self.menu_choice

    def close(self) -> None:
        self.closed = True

    def set_text_calls(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == "set_text" and call[1] == name)


@pytest.fixture
def sink() -> RecordingSink:
    """Recording presentation sink."""
    return RecordingSink()


@pytest.fixture
def socket_dir() -> Generator[Path, None, None]:
    """Short temporary directory; AF_UNIX paths are limited to ~108 bytes."""
    with tempfile.TemporaryDirectory(prefix="vbar-", dir="/tmp") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(socket_dir: Path) -> Settings:
    """Settings pointing at a private socket, without a configuration script."""
    return Settings(
        socket_path=socket_dir / "ipc.sock",
        config_script=None,
        shell=TEST_SHELL,
        probe_timeout=0.3,
    )


@pytest.fixture
def runner() -> CommandRunner:
    return CommandRunner(TEST_SHELL)


@pytest_asyncio.fixture
async def presentation(sink):
    """Running presentation loop in front of the recording sink."""
    dispatcher = PresentationDispatcher(sink)
    dispatcher.start()
    yield dispatcher
    await dispatcher.stop()


@pytest_asyncio.fixture
async def registry(presentation, runner):
    """Block registry whose executors are stopped after the test."""
    reg = BlockRegistry(presentation, runner)
    yield reg
    await reg.shutdown()


@pytest_asyncio.fixture
async def server(registry, presentation, settings):
    """Listening control server."""
    srv = ControlServer(
        registry,
        presentation,
        settings.socket_path,
        pid_path=settings.pid_path,
        probe_timeout=settings.probe_timeout,
    )
    await srv.start()
    yield srv
    await srv.stop()


@pytest.fixture
def eventually() -> Callable:
    """Poll a predicate until it holds or the timeout expires."""

    async def wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()

    return wait
