"""Unit tests for the vbar command line."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from vbar.cli import VbarCLI
from vbar.errors import ControlError, EndpointInUseError
from vbar.models import AddBlock, AddCSS, AddMenu, ControlResult, Position, Remove, Update


@pytest.fixture(autouse=True)
def no_log_handlers():
    """Keep CLI runs from installing handlers bound to captured streams."""
    with patch("vbar.cli.setup_logging"), patch("vbar.cli.setup_daemon_logging"):
        yield


@pytest.fixture
def mock_client():
    """Patch ControlClient in the CLI module; yields the client instance."""
    with patch("vbar.cli.ControlClient") as client_cls:
        instance = client_cls.return_value
        instance.send = AsyncMock(return_value=ControlResult(message="ok"))
        instance.ping = AsyncMock(return_value=ControlResult(message="pong", details={"pid": 42, "blocks": 3}))
        instance.client_cls = client_cls
        yield instance


def sent(mock_client):
    return mock_client.send.await_args.args[0]


class TestRequestCommands:
    """Each subcommand sends the matching request."""

    def test_add_block(self, mock_client):
        code = VbarCLI().run([
            "add-block", "--name", "cpu", "--right", "--command", "uptime",
            "--interval", "5", "--click-command", "htop", "--text", "...",
        ])
        assert code == 0
        request = sent(mock_client)
        assert isinstance(request, AddBlock)
        assert request.name == "cpu"
        assert request.position == Position.RIGHT
        assert request.command == "uptime"
        assert request.interval == 5
        assert request.click_command == "htop"
        assert request.text == "..."

    def test_add_block_defaults_to_left(self, mock_client):
        assert VbarCLI().run(["add-block", "--name", "cpu"]) == 0
        assert sent(mock_client).position == Position.LEFT

    @pytest.mark.parametrize("argv,command", [
        (["add-block", "--name", "cpu", "--command", "start"], "start"),
        (["add-block", "--name", "cpu"], None),
        (["add-menu", "--name", "cpu", "--text", "Top", "--command", "ping"], "ping"),
    ])
    def test_command_flag_is_independent_of_subcommand(self, mock_client, argv, command):
        assert VbarCLI().run(argv) == 0
        assert mock_client.send.await_count == 1
        assert sent(mock_client).command == command

    @pytest.mark.parametrize("argv,expected", [
        (["add-css", "--class", "cpu", "--css", "color: red;"], AddCSS(css_class="cpu", css="color: red;")),
        (["add-menu", "--name", "cpu", "--text", "Top", "--command", "htop"],
         AddMenu(name="cpu", text="Top", command="htop")),
        (["update", "--name", "cpu"], Update(name="cpu")),
        (["remove", "--name", "cpu"], Remove(name="cpu")),
    ])
    def test_other_requests(self, mock_client, argv, expected):
        assert VbarCLI().run(argv) == 0
        assert sent(mock_client) == expected

    def test_ping(self, mock_client, capsys):
        assert VbarCLI().run(["ping"]) == 0
        assert "pid 42" in capsys.readouterr().out


class TestValidation:
    """Invalid flag combinations fail before anything is sent."""

    @pytest.mark.parametrize("argv", [
        ["add-block", "--name", "cpu", "--left", "--right"],
        ["add-block", "--name", "cpu", "--command", "a", "--tail-command", "b"],
        ["add-block", "--name", "cpu", "--command", "a", "--interval", "-1"],
    ])
    def test_rejected(self, mock_client, argv, capsys):
        assert VbarCLI().run(argv) == 1
        mock_client.send.assert_not_awaited()
        assert "Invalid arguments" in capsys.readouterr().err

    def test_no_command(self, capsys):
        assert VbarCLI().run([]) == 1


class TestFailures:
    """Failure exit codes."""

    def test_control_error(self, mock_client, capsys):
        mock_client.send.side_effect = ControlError("Couldn't find block cpu.", code=1100)
        assert VbarCLI().run(["update", "--name", "cpu"]) == 1
        assert "Couldn't find block cpu." in capsys.readouterr().err

    def test_interrupt(self, mock_client):
        mock_client.send.side_effect = KeyboardInterrupt()
        assert VbarCLI().run(["remove", "--name", "cpu"]) == 130

    def test_start_refused_when_endpoint_in_use(self, capsys):
        with patch("vbar.cli.run_bar", AsyncMock(side_effect=EndpointInUseError("/tmp/x.sock", 7))):
            assert VbarCLI().run(["start"]) == 1
        err = capsys.readouterr().err
        assert "already listening" in err


class TestSocketOption:
    """--socket is honored before or after the subcommand."""

    def test_before_subcommand(self, mock_client):
        VbarCLI().run(["--socket", "/tmp/a.sock", "update", "--name", "x"])
        mock_client.client_cls.assert_called_with(Path("/tmp/a.sock"))

    def test_after_subcommand(self, mock_client):
        VbarCLI().run(["update", "--name", "x", "--socket", "/tmp/b.sock"])
        mock_client.client_cls.assert_called_with(Path("/tmp/b.sock"))

    def test_default(self, mock_client):
        VbarCLI().run(["update", "--name", "x"])
        mock_client.client_cls.assert_called_with(None)

    def test_start_uses_socket(self):
        with patch("vbar.cli.run_bar", AsyncMock()) as run_bar:
            assert VbarCLI().run(["start", "--socket", "/tmp/c.sock"]) == 0
        settings = run_bar.await_args.args[0]
        assert settings.socket_path == Path("/tmp/c.sock")
