"""
Block execution integration tests.

Runs real shell commands through the registry and observes the recorded sink.
"""

import asyncio
import math
from pathlib import Path

import psutil
import pytest

from vbar.models import AddBlock
from vbar.runner import CommandRunner


class TestCommandBlocks:
    """One-shot and interval commands."""

    @pytest.mark.asyncio
    async def test_command_output_becomes_text(self, registry, sink, eventually):
        await registry.add_block(AddBlock(name="greet", command="printf '  hello world \\n\\n'"))
        assert await eventually(lambda: sink.texts.get("greet") == "hello world")

    @pytest.mark.asyncio
    async def test_update_reruns_command(self, registry, sink, eventually, tmp_path: Path):
        counter = tmp_path / "count"
        counter.write_text("0")
        command = f"n=$(cat {counter}); n=$((n+1)); echo $n > {counter}; echo run$n"

        await registry.add_block(AddBlock(name="n", command=command))
        assert await eventually(lambda: sink.texts.get("n") == "run1")

        block = await registry.update_block("n")
        assert block.text == "run2"
        assert await eventually(lambda: sink.texts.get("n") == "run2")

    @pytest.mark.asyncio
    async def test_failing_command_shows_error(self, registry, sink, eventually):
        await registry.add_block(AddBlock(name="bad", text="start", command="echo partial; exit 3"))
        assert await eventually(lambda: sink.texts.get("bad") == "ERROR")

    @pytest.mark.asyncio
    async def test_interval_cadence(self, registry, sink, eventually, tmp_path: Path):
        runs = tmp_path / "runs"
        interval = 1
        loop = asyncio.get_running_loop()
        started = loop.time()
        await registry.add_block(AddBlock(name="tick", command=f"echo x >> {runs}; echo tick", interval=interval))

        await asyncio.sleep(2.5)
        # Immediate run plus one per elapsed interval; the newest tick gets 0.3s to finish
        elapsed = loop.time() - started
        expected = 1 + math.floor(max(0.0, elapsed - 0.3) / interval)
        assert len(runs.read_text().splitlines()) >= expected
        assert expected >= 3

    @pytest.mark.asyncio
    async def test_slow_run_does_not_delay_schedule(self, registry, tmp_path: Path):
        runs = tmp_path / "runs"
        loop = asyncio.get_running_loop()
        started = loop.time()
        await registry.add_block(AddBlock(name="slow", command=f"echo x >> {runs}; sleep 3", interval=1))

        await asyncio.sleep(2.5)
        elapsed = loop.time() - started
        assert len(runs.read_text().splitlines()) >= 1 + math.floor(max(0.0, elapsed - 0.3))


class TestTailBlocks:
    """Streaming commands."""

    @pytest.mark.asyncio
    async def test_lines_published_in_order(self, registry, sink, eventually):
        await registry.add_block(AddBlock(name="stream", tail_command="printf 'a\\nb\\nc\\n'"))
        assert await eventually(lambda: sink.texts.get("stream") == "c")

        observed = [t for t in sink.history["stream"] if t]
        assert observed == sorted(observed)
        assert set(observed) <= {"a", "b", "c"}

    @pytest.mark.asyncio
    async def test_clean_exit_keeps_last_line(self, registry, sink, eventually):
        block = await registry.add_block(AddBlock(name="stream", tail_command="echo done"))
        assert await eventually(lambda: block.executor is not None and not block.executor.running)
        await asyncio.sleep(0.1)
        assert sink.texts["stream"] == "done"

    @pytest.mark.asyncio
    async def test_failed_stream_shows_error(self, registry, sink, eventually):
        await registry.add_block(AddBlock(name="stream", tail_command="echo one; exit 1"))
        assert await eventually(lambda: sink.texts.get("stream") == "ERROR")
        assert "one" in sink.history["stream"]

    @pytest.mark.asyncio
    async def test_remove_kills_stream(self, registry, presentation, sink, eventually, tmp_path: Path):
        pid_file = tmp_path / "pid"
        await registry.add_block(AddBlock(
            name="loop",
            tail_command=f"echo $$ > {pid_file}; while true; do echo x; sleep 0.05; done",
        ))
        assert await eventually(lambda: sink.texts.get("loop") == "x")

        await registry.remove_block("loop")
        await presentation.join()
        published = sink.set_text_calls("loop")

        await asyncio.sleep(0.5)
        await presentation.join()
        assert sink.set_text_calls("loop") == published

        pid = int(pid_file.read_text())
        assert await eventually(lambda: not psutil.pid_exists(pid) or
                                psutil.Process(pid).status() == psutil.STATUS_ZOMBIE)

    @pytest.mark.asyncio
    async def test_remove_kills_stream_after_stdout_closed(self, registry, sink, eventually, tmp_path: Path):
        pid_file = tmp_path / "pid"
        block = await registry.add_block(AddBlock(
            name="quiet",
            tail_command=f"echo $$ > {pid_file}; echo a; exec >&-; sleep 30",
        ))
        assert await eventually(lambda: sink.texts.get("quiet") == "a")
        pid = int(pid_file.read_text())
        # stdout is closed but the command is still running
        await asyncio.sleep(0.2)
        assert block.executor.running
        assert psutil.pid_exists(pid)

        await registry.remove_block("quiet")
        assert await eventually(lambda: not psutil.pid_exists(pid) or
                                psutil.Process(pid).status() == psutil.STATUS_ZOMBIE)


class TestRemovalCancelsWork:
    """No publication reaches the sink after a block is removed."""

    @pytest.mark.asyncio
    async def test_interval_stops(self, registry, presentation, sink, eventually):
        await registry.add_block(AddBlock(name="tick", command="echo tick", interval=1))
        assert await eventually(lambda: sink.texts.get("tick") == "tick")

        await registry.remove_block("tick")
        await presentation.join()
        published = sink.set_text_calls("tick")

        await asyncio.sleep(1.5)
        await presentation.join()
        assert sink.set_text_calls("tick") == published

    @pytest.mark.asyncio
    async def test_in_flight_run_cancelled(self, registry, presentation, sink):
        block = await registry.add_block(AddBlock(name="slow", command="sleep 5; echo late"))
        await asyncio.sleep(0.2)
        await registry.remove_block("slow")

        assert not block.executor.running
        await presentation.join()
        assert sink.set_text_calls("slow") == 0


class TestClicks:
    """Click and menu commands."""

    @pytest.mark.asyncio
    async def test_click_command_launched(self, registry, eventually, tmp_path: Path):
        marker = tmp_path / "clicked"
        block = await registry.add_block(AddBlock(name="btn", text="go", click_command=f"touch {marker}"))
        block.executor.click()
        assert await eventually(marker.exists)

    @pytest.mark.asyncio
    async def test_menu_item_launched(self, registry, eventually, tmp_path: Path):
        marker = tmp_path / "second"
        await registry.add_block(AddBlock(name="power"))
        await registry.add_menu_item("power", "First", "true")
        block = await registry.add_menu_item("power", "Second", f"touch {marker}")

        block.executor.activate_menu_item(1)
        assert await eventually(marker.exists)

    @pytest.mark.asyncio
    async def test_click_without_command_is_ignored(self, registry):
        block = await registry.add_block(AddBlock(name="label"))
        block.executor.click()
        block.executor.activate_menu_item(0)


class TestCommandRunner:
    """Direct runner behavior."""

    @pytest.mark.asyncio
    async def test_missing_shell(self):
        result = await CommandRunner("/nonexistent/shell").run("true")
        assert not result.ok
        assert result.error

    @pytest.mark.asyncio
    async def test_children_do_not_read_stdin(self):
        result = await CommandRunner("/bin/sh").run("cat")
        assert result.ok
        assert result.output == ""
