"""
IPC server for vbar.

JSON-RPC server over a Unix socket. Each line is one request; each request is
decoded into a ControlRequest, fully applied, then answered.
"""

import asyncio
import fcntl
import json
import logging
import os
from pathlib import Path
from typing import IO, Any, Awaitable, Callable, Dict, Optional, Set, get_args

import psutil

from .client import EndpointStatus, probe_endpoint
from .errors import BarError, EndpointInUseError, ErrorCode, error_response
from .models import (
    AddBlock,
    AddCSS,
    AddMenu,
    ControlRequest,
    ControlResult,
    Ping,
    Remove,
    Update,
    parse_request,
)
from .presentation import PresentationDispatcher
from .registry import BlockRegistry

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[ControlResult]]


def read_pid_file(pid_path: Path) -> Optional[int]:
    """Pid recorded by the instance that owns the socket, if readable."""
    try:
        return int(pid_path.read_text().strip())
    except (OSError, ValueError):
        return None


class ControlServer:
    """JSON-RPC IPC server for block control requests."""

    def __init__(
        self,
        registry: BlockRegistry,
        presentation: PresentationDispatcher,
        socket_path: Path,
        pid_path: Optional[Path] = None,
        probe_timeout: float = 1.0,
    ):
        """
        Initialize IPC server.

        Args:
            registry: Block registry mutated by requests
            presentation: Dispatcher for requests that only touch the sink
            socket_path: Control socket path
            pid_path: Pid file path (defaults to the socket path with .pid)
            probe_timeout: Seconds to wait when probing an existing socket
        """
        self.registry = registry
        self.presentation = presentation
        self.socket_path = socket_path
        self.pid_path = pid_path or socket_path.with_suffix(".pid")
        self.lock_path = socket_path.with_suffix(".lock")
        self.probe_timeout = probe_timeout
        self.server: Optional[asyncio.AbstractServer] = None
        self.clients: Set[asyncio.StreamWriter] = set()
        self._lock_fd: Optional[IO[str]] = None
        self.state = "unbound"

        self._handlers: Dict[type, Handler] = {
            AddBlock: self._handle_add_block,
            AddCSS: self._handle_add_css,
            AddMenu: self._handle_add_menu,
            Update: self._handle_update,
            Remove: self._handle_remove,
            Ping: self._handle_ping,
        }
        variants = set(get_args(get_args(ControlRequest)[0]))
        missing = variants - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for {sorted(v.__name__ for v in missing)}")

    async def start(self) -> None:
        """Claim the socket and start listening.

        Raises:
            EndpointInUseError: If another live instance owns the socket
        """
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        # Held while listening; serializes concurrent starts on the same path
        self._acquire_lock()
        try:
            await self._claim_endpoint()

            self.server = await asyncio.start_unix_server(
                self._handle_client,
                path=str(self.socket_path)
            )

            # Ensure socket is user-only accessible (0600)
            self.socket_path.chmod(0o600)
            self.pid_path.write_text(f"{os.getpid()}\n")
        except BaseException:
            self._release_lock()
            raise
        self.state = "listening"

        logger.info(f"IPC server listening on {self.socket_path} (permissions: 0600)")

    def _acquire_lock(self) -> None:
        lock_fd = open(self.lock_path, 'w')
        try:
            fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_fd.close()
            raise EndpointInUseError(str(self.socket_path), read_pid_file(self.pid_path))
        self._lock_fd = lock_fd

    def _release_lock(self) -> None:
        # The lock file is never unlinked
        if self._lock_fd is not None:
            fcntl.flock(self._lock_fd.fileno(), fcntl.LOCK_UN)
            self._lock_fd.close()
            self._lock_fd = None

    async def _claim_endpoint(self) -> None:
        if not self.socket_path.exists():
            return

        status = await probe_endpoint(self.socket_path, timeout=self.probe_timeout)
        pid = read_pid_file(self.pid_path)

        if status == EndpointStatus.LIVE:
            raise EndpointInUseError(str(self.socket_path), pid)

        if status == EndpointStatus.UNRESPONSIVE and pid is not None and pid != os.getpid():
            if psutil.pid_exists(pid):
                raise EndpointInUseError(str(self.socket_path), pid)

        logger.warning(f"Removing stale socket {self.socket_path} ({status.value}, pid={pid})")
        self.socket_path.unlink(missing_ok=True)
        self.pid_path.unlink(missing_ok=True)

    async def close(self) -> None:
        """Stop accepting connections and drop connected clients."""
        if self.server:
            self.server.close()

        for writer in list(self.clients):
            writer.close()

        if self.server:
            await self.server.wait_closed()
            self.server = None

        if self.state == "listening":
            self.state = "closed"
        logger.info("IPC server stopped accepting connections")

    def release(self) -> None:
        """Remove the socket and pid file if this process still owns them, then unlock."""
        if self._lock_fd is not None and read_pid_file(self.pid_path) == os.getpid():
            self.socket_path.unlink(missing_ok=True)
            self.pid_path.unlink(missing_ok=True)
            logger.info(f"Released {self.socket_path}")
        self._release_lock()

    async def stop(self) -> None:
        """Stop IPC server and release the socket."""
        await self.close()
        self.release()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """
        Handle client connection.

        Args:
            reader: Stream reader
            writer: Stream writer
        """
        self.clients.add(writer)
        logger.debug("Client connected")

        try:
            while True:
                data = await reader.readline()
                if not data:
                    break

                try:
                    request = json.loads(data.decode())
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    logger.error(f"JSON decode error: {e}")
                    response = error_response(
                        BarError(ErrorCode.PARSE_ERROR, "Parse error"), None
                    )
                else:
                    response = await self._handle_request(request)

                writer.write((json.dumps(response) + "\n").encode())
                await writer.drain()

        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Client went away: {e}")
        except ValueError as e:
            # Line longer than the stream limit
            logger.error(f"Client handler error: {e}")
        finally:
            self.clients.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            logger.debug("Client disconnected")

    async def _handle_request(self, request: Any) -> Dict[str, Any]:
        """
        Handle JSON-RPC request.

        Args:
            request: Decoded JSON-RPC request

        Returns:
            JSON-RPC response dict
        """
        if not isinstance(request, dict):
            return error_response(
                BarError(ErrorCode.INVALID_REQUEST, "Request must be a JSON object"), None
            )

        method = request.get("method")
        request_id = request.get("id")
        logger.debug(f"Received request: {method}")

        try:
            control_request = parse_request(method, request.get("params"))
            result = await self.dispatch(control_request)
            return {
                "jsonrpc": "2.0",
                "result": result.model_dump(),
                "id": request_id
            }

        except BarError as e:
            logger.warning(f"{method} failed: {e.message}")
            return error_response(e, request_id)

        except Exception as e:
            logger.error(f"Unexpected error handling {method}: {e}", exc_info=True)
            return error_response(e, request_id)

    async def dispatch(self, request: ControlRequest) -> ControlResult:
        """Apply one control request."""
        return await self._handlers[type(request)](request)

    async def _handle_add_block(self, request: AddBlock) -> ControlResult:
        block = await self.registry.add_block(request)
        return ControlResult(message=f"Added block {block.name}")

    async def _handle_add_css(self, request: AddCSS) -> ControlResult:
        self.presentation.add_css(request.css_class, request.css)
        return ControlResult(message=f"Added CSS for {request.css_class}")

    async def _handle_add_menu(self, request: AddMenu) -> ControlResult:
        block = await self.registry.add_menu_item(request.name, request.text, request.command)
        return ControlResult(
            message=f"Added menu item to {block.name}",
            details={"items": len(block.menu_items)},
        )

    async def _handle_update(self, request: Update) -> ControlResult:
        block = await self.registry.update_block(request.name)
        return ControlResult(message=f"Updated block {block.name}", details={"text": block.text})

    async def _handle_remove(self, request: Remove) -> ControlResult:
        block = await self.registry.remove_block(request.name)
        return ControlResult(message=f"Removed block {block.name}")

    async def _handle_ping(self, request: Ping) -> ControlResult:
        return ControlResult(
            message="pong",
            details={"pid": os.getpid(), "blocks": len(self.registry)},
        )
