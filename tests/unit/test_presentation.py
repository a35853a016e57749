"""Unit tests for the presentation dispatcher."""

import asyncio
import threading

import pytest

from vbar.models import Position
from vbar.presentation import Placement, PresentationDispatcher


class TestPresentationDispatcher:
    """Test FIFO delivery and batching of sink calls."""

    @pytest.mark.asyncio
    async def test_calls_applied_in_order(self, sink, presentation):
        presentation.create_block("a", "", Position.LEFT, Placement())
        for text in ("1", "2", "3"):
            presentation.set_text("a", text)
        presentation.remove_block("a")
        await presentation.join()

        assert [call[0] for call in sink.calls] == [
            "create_block", "set_text", "set_text", "set_text", "remove_block",
        ]
        assert sink.history["a"] == ["", "1", "2", "3"]

    @pytest.mark.asyncio
    async def test_one_flush_per_batch(self, sink, presentation):
        await presentation.join()
        flushes = sink.flushes

        presentation.create_block("a", "", Position.LEFT, Placement())
        presentation.set_text("a", "x")
        presentation.set_text("a", "y")
        await presentation.join()
        # join() returns once the last call is applied; the flush follows it
        await asyncio.sleep(0)

        assert sink.flushes == flushes + 1

    @pytest.mark.asyncio
    async def test_sink_errors_do_not_stop_the_loop(self, sink, presentation, caplog):
        presentation.remove_block("missing")
        presentation.create_block("a", "ok", Position.LEFT, Placement())
        await presentation.join()

        assert sink.texts == {"a": "ok"}
        assert "remove_block failed" in caplog.text

    @pytest.mark.asyncio
    async def test_submit_threadsafe(self, sink, presentation):
        presentation.create_block("a", "", Position.LEFT, Placement())
        thread = threading.Thread(target=presentation.submit_threadsafe, args=("set_text", "a", "from-thread"))
        thread.start()
        thread.join()

        await asyncio.sleep(0.05)
        await presentation.join()
        assert sink.texts["a"] == "from-thread"

    @pytest.mark.asyncio
    async def test_stop_drains_pending_calls(self, sink):
        dispatcher = PresentationDispatcher(sink)
        dispatcher.start()
        dispatcher.create_block("a", "", Position.LEFT, Placement())
        dispatcher.set_text("a", "last")
        await dispatcher.stop()

        assert sink.texts["a"] == "last"

    def test_submit_threadsafe_requires_running_loop(self, sink):
        dispatcher = PresentationDispatcher(sink)
        with pytest.raises(RuntimeError):
            dispatcher.submit_threadsafe("set_text", "a", "x")
