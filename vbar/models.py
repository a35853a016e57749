"""
Pydantic data models for the vbar control protocol.

Control requests form a closed tagged union keyed by ``kind``; the JSON-RPC
method name of a request is its kind.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from .errors import BarError, ErrorCode, InvalidParamsError


class Position(str, Enum):
    """Horizontal group a block belongs to."""
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class MenuItem:
    """One entry of a block menu."""
    label: str
    command: str


class _Request(BaseModel):
    """Common configuration for control requests."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class AddBlock(_Request):
    """Create a block and start driving it."""

    kind: Literal["add_block"] = "add_block"
    name: str = Field(..., min_length=1, description="Unique block name")
    text: str = Field("", description="Initial text")
    left: bool = False
    center: bool = False
    right: bool = False
    command: Optional[str] = Field(None, description="One-shot or interval command")
    tail_command: Optional[str] = Field(None, description="Command whose stdout lines replace the text")
    interval: int = Field(0, ge=0, description="Seconds between command runs, 0 runs once")
    click_command: Optional[str] = Field(None, description="Command fired when the block is clicked")

    @field_validator("command", "tail_command", "click_command")
    @classmethod
    def empty_as_none(cls, v: Optional[str]) -> Optional[str]:
        """Unset CLI flags arrive as empty strings."""
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_exclusive(self) -> "AddBlock":
        """Position flags and the two command modes are mutually exclusive."""
        if sum((self.left, self.center, self.right)) > 1:
            raise ValueError("only one of left, center, right may be set")
        if self.command and self.tail_command:
            raise ValueError("command and tail_command are mutually exclusive")
        return self

    @property
    def position(self) -> Position:
        """Resolved position; no flag means left."""
        if self.center:
            return Position.CENTER
        if self.right:
            return Position.RIGHT
        return Position.LEFT


class AddCSS(_Request):
    """Add style declarations for a class."""

    kind: Literal["add_css"] = "add_css"
    css_class: str = Field(..., min_length=1)
    css: str


class AddMenu(_Request):
    """Append a menu item to a block."""

    kind: Literal["add_menu"] = "add_menu"
    name: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)


class Update(_Request):
    """Re-run a block's command once."""

    kind: Literal["update"] = "update"
    name: str = Field(..., min_length=1)


class Remove(_Request):
    """Remove a block and cancel its background work."""

    kind: Literal["remove"] = "remove"
    name: str = Field(..., min_length=1)


class Ping(_Request):
    """Liveness probe."""

    kind: Literal["ping"] = "ping"


ControlRequest = Annotated[
    Union[AddBlock, AddCSS, AddMenu, Update, Remove, Ping],
    Field(discriminator="kind"),
]

_request_adapter = TypeAdapter(ControlRequest)

METHODS = ("add_block", "add_css", "add_menu", "update", "remove", "ping")


class ControlResult(BaseModel):
    """Successful reply payload."""

    success: bool = True
    message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


def parse_request(method: Optional[str], params: Optional[Dict[str, Any]]) -> ControlRequest:
    """Decode a JSON-RPC method and params into a control request.

    Raises:
        BarError: METHOD_NOT_FOUND for unknown methods
        InvalidParamsError: If the params do not validate
    """
    if method not in METHODS:
        raise BarError(
            code=ErrorCode.METHOD_NOT_FOUND,
            message=f"Method not found: {method}",
            suggestion="Check API documentation for available methods",
            context={"available_methods": list(METHODS)}
        )
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise InvalidParamsError("params must be an object")
    if "kind" in params:
        raise InvalidParamsError("Unknown parameters: kind", context={"unknown": ["kind"]})

    try:
        return _request_adapter.validate_python({**params, "kind": method})
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'][1:]) or method}: {err['msg']}"
            for err in e.errors()
        ]
        raise InvalidParamsError(
            f"Invalid parameters for {method}: {'; '.join(problems)}",
            context={"errors": problems}
        )


def request_params(request: ControlRequest) -> Dict[str, Any]:
    """Serialize a request into JSON-RPC params (the method carries the kind)."""
    return request.model_dump(exclude={"kind"}, exclude_none=True)


class MouseButton(Enum):
    """Mouse button codes from i3bar protocol."""
    LEFT = 1
    MIDDLE = 2
    RIGHT = 3
    SCROLL_UP = 4
    SCROLL_DOWN = 5


@dataclass
class ClickEvent:
    """A click event from swaybar (i3bar protocol).

    Sent from swaybar to the bar via stdin when the user clicks a block.
    """

    name: str
    button: int
    x: int = 0
    y: int = 0

    @classmethod
    def from_json(cls, data: dict) -> "ClickEvent":
        """Parse from i3bar protocol JSON.

        Args:
            data: Click event JSON dict from swaybar stdin

        Raises:
            KeyError: If the event has no block name
        """
        return cls(
            name=data["name"],
            button=int(data.get("button", MouseButton.LEFT.value)),
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
        )
