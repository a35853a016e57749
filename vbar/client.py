"""Control client used by short-lived vbar CLI invocations.

Speaks JSON-RPC 2.0 over the bar's Unix socket: one request, one reply, no
retries. Every failure surfaces as ControlError.
"""

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .config import get_default_socket_path
from .errors import ControlError
from .models import ControlRequest, ControlResult, Ping, request_params


class EndpointStatus(str, Enum):
    """Outcome of probing an existing control socket."""
    LIVE = "live"
    STALE = "stale"
    UNRESPONSIVE = "unresponsive"


class ControlClient:
    """IPC client for a running bar."""

    def __init__(self, socket_path: Optional[Path] = None, timeout: Optional[float] = None):
        """Initialize control client.

        Args:
            socket_path: Path to the bar's Unix socket (default: $VBAR_SOCKET or XDG_RUNTIME_DIR/vbar/ipc.sock)
            timeout: Seconds to wait for connect and reply; None waits forever
        """
        self.socket_path = socket_path or get_default_socket_path()
        self.timeout = timeout
        self._request_id = 0

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one JSON-RPC request and return its result object.

        Raises:
            ControlError: If the bar is unreachable, the reply is malformed,
                or the bar reports an error
        """
        self._request_id += 1
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or {},
            "id": self._request_id,
        }

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self.socket_path)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ControlError(f"Connection timeout: bar not responding at {self.socket_path}")
        except (FileNotFoundError, ConnectionRefusedError):
            raise ControlError(
                f"Bar not running (no listener at {self.socket_path})\n"
                "Start it with: vbar start"
            )
        except OSError as e:
            raise ControlError(f"Failed to connect to bar: {e}")

        try:
            writer.write((json.dumps(request) + "\n").encode())
            await asyncio.wait_for(writer.drain(), timeout=self.timeout)
            line = await asyncio.wait_for(reader.readline(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ControlError(f"Request timeout: method '{method}' took too long")
        except OSError as e:
            raise ControlError(f"Communication error: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

        if not line:
            raise ControlError("Bar closed the connection without replying")

        try:
            response = json.loads(line.decode())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ControlError(f"Invalid JSON response from bar: {e}")

        if not isinstance(response, dict):
            raise ControlError("Invalid response from bar: not a JSON object")

        if "error" in response:
            error = response["error"] or {}
            message = error.get("message", "Unknown error")
            if error.get("suggestion"):
                message = f"{message}\n  → {error['suggestion']}"
            raise ControlError(message, code=error.get("code"))

        result = response.get("result")
        if not isinstance(result, dict):
            raise ControlError("Invalid response from bar: missing result")
        return result

    async def send(self, request: ControlRequest) -> ControlResult:
        """Send a control request; succeed only on an explicit success reply.

        Raises:
            ControlError: On any transport, decoding or application failure
        """
        result = await self.call(request.kind, request_params(request))
        try:
            reply = ControlResult.model_validate(result)
        except ValueError as e:
            raise ControlError(f"Invalid result from bar: {e}")

        if not reply.success:
            raise ControlError(reply.message or "Command failed.")
        return reply

    async def ping(self) -> ControlResult:
        """Check that a bar is answering on the socket."""
        return await self.send(Ping())


async def probe_endpoint(socket_path: Path, timeout: float = 1.0) -> EndpointStatus:
    """Classify an existing socket file.

    LIVE: a bar answered a ping. STALE: nothing is listening.
    UNRESPONSIVE: something accepted the connection but did not answer.
    """
    client = ControlClient(socket_path, timeout=timeout)
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_unix_connection(str(socket_path)), timeout=timeout
        )
    except (FileNotFoundError, ConnectionRefusedError):
        return EndpointStatus.STALE
    except asyncio.TimeoutError:
        return EndpointStatus.UNRESPONSIVE
    except OSError:
        return EndpointStatus.STALE
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass

    try:
        await client.ping()
    except ControlError:
        return EndpointStatus.UNRESPONSIVE
    return EndpointStatus.LIVE
