#!/usr/bin/env python3
"""
vbar CLI

``vbar start`` runs the bar; every other subcommand sends one control request
to a running bar and exits 0 on success, 1 on failure.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from .client import ControlClient
from .config import Settings
from .daemon import run_bar
from .errors import BarError, ControlError
from .logging_config import setup_daemon_logging, setup_logging
from .models import AddBlock, AddCSS, AddMenu, ControlRequest, Remove, Update

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


def _validation_message(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"])
        problems.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(problems)


class VbarCLI:
    """Command-line front end for the bar and its control socket."""

    def __init__(self, socket_path: Optional[Path] = None):
        """Initialize CLI.

        Args:
            socket_path: Control socket override (default: $VBAR_SOCKET or XDG_RUNTIME_DIR)
        """
        self.socket_path = socket_path

    def client(self) -> ControlClient:
        return ControlClient(self.socket_path)

    async def send(self, request: ControlRequest) -> int:
        """Send one request and report the outcome."""
        result = await self.client().send(request)
        if result.message:
            console.print(f"[green]✓[/green] {escape(result.message)}")
        return 0

    async def cmd_start(self, args) -> int:
        """Run the bar in the foreground."""
        settings = Settings.from_env(socket_path=self.socket_path)
        await run_bar(settings)
        return 0

    async def cmd_add_block(self, args) -> int:
        """Add a block."""
        request = AddBlock(
            name=args.name,
            text=args.text,
            left=args.left,
            center=args.center,
            right=args.right,
            command=args.command,
            tail_command=args.tail_command,
            interval=args.interval,
            click_command=args.click_command,
        )
        return await self.send(request)

    async def cmd_add_css(self, args) -> int:
        """Add style declarations for a class."""
        return await self.send(AddCSS(css_class=args.css_class, css=args.css))

    async def cmd_add_menu(self, args) -> int:
        """Append a menu item to a block."""
        return await self.send(AddMenu(name=args.name, text=args.text, command=args.command))

    async def cmd_update(self, args) -> int:
        """Re-run a block's command."""
        return await self.send(Update(name=args.name))

    async def cmd_remove(self, args) -> int:
        """Remove a block."""
        return await self.send(Remove(name=args.name))

    async def cmd_ping(self, args) -> int:
        """Check if a bar is running."""
        result = await self.client().ping()
        pid = result.details.get("pid", "?")
        blocks = result.details.get("blocks", 0)
        console.print(f"[green]✓[/green] vbar is running (pid {pid}, {blocks} blocks)")
        return 0

    def build_parser(self) -> argparse.ArgumentParser:
        # Global options are accepted before or after the subcommand
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument("--socket", type=Path, default=argparse.SUPPRESS,
                            help="Control socket path (default: $VBAR_SOCKET or $XDG_RUNTIME_DIR/vbar/ipc.sock)")
        common.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
                            help="Enable verbose logging")
        common.add_argument("--debug", action="store_true", default=argparse.SUPPRESS,
                            help="Enable debug logging")

        parser = argparse.ArgumentParser(
            description="Scriptable status bar",
            prog="vbar",
        )
        parser.add_argument("--socket", type=Path, help="Control socket path")
        parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
        parser.add_argument("--debug", action="store_true", help="Enable debug logging")

        subparsers = parser.add_subparsers(dest="subcommand", help="Command to execute")

        # Start command
        subparsers.add_parser("start", parents=[common], help="Run the bar")

        # Add-block command
        add_block = subparsers.add_parser("add-block", parents=[common], help="Add a block")
        add_block.add_argument("--name", required=True, help="Unique block name")
        add_block.add_argument("--text", default="", help="Initial text")
        add_block.add_argument("--left", action="store_true", help="Place in the left group (default)")
        add_block.add_argument("--center", action="store_true", help="Place in the center group")
        add_block.add_argument("--right", action="store_true", help="Place in the right group")
        add_block.add_argument("--command", help="Command whose output becomes the text")
        add_block.add_argument("--tail-command", help="Long-running command; each output line becomes the text")
        add_block.add_argument("--interval", type=int, default=0,
                               help="Seconds between --command runs (0 runs once)")
        add_block.add_argument("--click-command", help="Command run when the block is clicked")

        # Add-css command
        add_css = subparsers.add_parser("add-css", parents=[common], help="Add style declarations")
        add_css.add_argument("--class", dest="css_class", required=True, help="Class name (block name or 'block')")
        add_css.add_argument("--css", required=True, help="Declarations, e.g. 'color: #ff0000;'")

        # Add-menu command
        add_menu = subparsers.add_parser("add-menu", parents=[common], help="Add a menu item to a block")
        add_menu.add_argument("--name", required=True, help="Block name")
        add_menu.add_argument("--text", required=True, help="Menu item label")
        add_menu.add_argument("--command", required=True, help="Command run when the item is chosen")

        # Update command
        update = subparsers.add_parser("update", parents=[common], help="Re-run a block's command")
        update.add_argument("--name", required=True, help="Block name")

        # Remove command
        remove = subparsers.add_parser("remove", parents=[common], help="Remove a block")
        remove.add_argument("--name", required=True, help="Block name")

        # Ping command
        subparsers.add_parser("ping", parents=[common], help="Check if a bar is running")

        return parser

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run CLI."""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        if not args.subcommand:
            parser.print_help()
            return 1

        if args.socket is not None:
            self.socket_path = args.socket

        if args.subcommand == "start":
            setup_daemon_logging(verbose=args.verbose, debug=args.debug)
        else:
            setup_logging(verbose=args.verbose, debug=args.debug)

        # Route to command handler
        cmd_map = {
            "start": self.cmd_start,
            "add-block": self.cmd_add_block,
            "add-css": self.cmd_add_css,
            "add-menu": self.cmd_add_menu,
            "update": self.cmd_update,
            "remove": self.cmd_remove,
            "ping": self.cmd_ping,
        }

        handler = cmd_map.get(args.subcommand)
        if not handler:
            err_console.print(f"Unknown command: {escape(args.subcommand)}")
            return 1

        try:
            return asyncio.run(handler(args))
        except KeyboardInterrupt:
            err_console.print("\nInterrupted")
            return 130
        except ValidationError as e:
            err_console.print(f"[red]✗ Invalid arguments:[/red] {escape(_validation_message(e))}")
            return 1
        except ControlError as e:
            err_console.print(f"[red]✗[/red] {escape(e.message)}")
            return 1
        except BarError as e:
            err_console.print(f"[red]✗[/red] {escape(e.message)}")
            if e.suggestion:
                err_console.print(f"  → {escape(e.suggestion)}")
            return 1
        except Exception as e:
            logger.debug("Unhandled error", exc_info=True)
            err_console.print(f"[red]✗ Error:[/red] {escape(str(e))}")
            return 1


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    cli = VbarCLI()
    sys.exit(cli.run(argv))


if __name__ == "__main__":
    main()
