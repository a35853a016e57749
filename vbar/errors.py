"""
Error handling for the vbar control protocol.

Every failure that crosses the control socket is a BarError carrying a
structured code, a human-readable message and an optional recovery hint.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """
    Error codes for vbar.

    JSON-RPC standard codes:
    - -32700: Parse error
    - -32600: Invalid request
    - -32601: Method not found
    - -32602: Invalid params
    - -32603: Internal error

    Custom codes:
    - 1100-1199: Block registry errors
    - 1200-1299: Control endpoint errors
    """

    # JSON-RPC standard errors
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Block registry errors (1100-1199)
    BLOCK_NOT_FOUND = 1100
    DUPLICATE_BLOCK = 1101

    # Control endpoint errors (1200-1299)
    ENDPOINT_IN_USE = 1200
    ENDPOINT_UNREACHABLE = 1201
    PROTOCOL_ERROR = 1202


class BarError(Exception):
    """Base exception for vbar failures reported over the control protocol."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize bar error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON-RPC response.

        Returns:
            Error dictionary with code, message, suggestion, and context
        """
        result = {
            "code": self.code.value,
            "message": self.message
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class BlockNotFoundError(BarError):
    """Raised when a request targets a block name absent from the registry."""

    def __init__(self, name: str):
        super().__init__(
            code=ErrorCode.BLOCK_NOT_FOUND,
            message=f"Couldn't find block {name}.",
            suggestion="Add the block first with: vbar add-block --name " + name,
            context={"name": name}
        )


class DuplicateBlockError(BarError):
    """Raised when AddBlock reuses the name of a live block."""

    def __init__(self, name: str):
        super().__init__(
            code=ErrorCode.DUPLICATE_BLOCK,
            message=f"Block {name} already exists.",
            suggestion=f"Remove it first with: vbar remove --name {name}",
            context={"name": name}
        )


class InvalidParamsError(BarError):
    """Raised when request parameters fail validation."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.INVALID_PARAMS,
            message=message,
            suggestion="Check the command flags with: vbar <command> --help",
            context=context
        )


class EndpointInUseError(BarError):
    """Raised at startup when another live instance owns the control socket."""

    def __init__(self, socket_path: str, pid: Optional[int] = None):
        context: Dict[str, Any] = {"socket_path": socket_path}
        if pid is not None:
            context["pid"] = pid

        super().__init__(
            code=ErrorCode.ENDPOINT_IN_USE,
            message=f"Another vbar instance is already listening on {socket_path}",
            suggestion="Stop the running bar or point VBAR_SOCKET at another path",
            context=context
        )


class ControlError(Exception):
    """Client-side failure: transport, decoding or an application error reply."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.message = message
        self.code = code
        super().__init__(message)


def error_response(error: Exception, request_id: Optional[Any] = None) -> Dict[str, Any]:
    """
    Create JSON-RPC error response from exception.

    Args:
        error: Exception to convert
        request_id: JSON-RPC request ID

    Returns:
        JSON-RPC error response dictionary
    """
    if isinstance(error, BarError):
        error_dict = error.to_dict()
    else:
        error_dict = {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": str(error),
            "suggestion": "Check bar logs for details"
        }

    return {
        "jsonrpc": "2.0",
        "error": error_dict,
        "id": request_id
    }
