"""CSS-like class styles mapped onto i3bar block fields.

Only declarations i3bar can express are rendered; the rest are stored so
``add-css`` never rejects a stylesheet another backend could use.
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

BLOCK_CLASS = "block"

_DECLARATION = re.compile(r"\s*([a-zA-Z-]+)\s*:\s*([^;]+?)\s*(?:;|$)")
_PIXELS = re.compile(r"^(-?\d+)(?:px)?$")


def _pixels(value: str) -> Optional[int]:
    match = _PIXELS.match(value.strip())
    return int(match.group(1)) if match else None


def _flag(value: str) -> Optional[bool]:
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "1", "on"):
        return True
    if lowered in ("false", "no", "0", "off", "none"):
        return False
    return None


def _border(value: str) -> Optional[str]:
    # "1px solid #ff0000" -> "#ff0000"
    for token in value.split():
        if token.startswith("#"):
            return token
    return value.strip() or None


# property -> (i3bar field, converter)
_FIELDS: Dict[str, tuple] = {
    "color": ("color", str.strip),
    "background": ("background", str.strip),
    "background-color": ("background", str.strip),
    "border": ("border", _border),
    "border-color": ("border", str.strip),
    "border-top": ("border_top", _pixels),
    "border-right": ("border_right", _pixels),
    "border-bottom": ("border_bottom", _pixels),
    "border-left": ("border_left", _pixels),
    "min-width": ("min_width", _pixels),
    "text-align": ("align", str.strip),
    "separator": ("separator", _flag),
    "separator-block-width": ("separator_block_width", _pixels),
}


def parse_declarations(css: str) -> Dict[str, str]:
    """Parse ``prop: value; prop: value`` into a dict (braces are ignored)."""
    body = css.strip()
    if "{" in body:
        body = body[body.index("{") + 1:]
    body = body.replace("}", "")
    return {m.group(1).lower(): m.group(2) for m in _DECLARATION.finditer(body)}


class Stylesheet:
    """Declarations per class, resolved to i3bar fields per block."""

    def __init__(self) -> None:
        self.classes: Dict[str, Dict[str, str]] = {}

    def add(self, css_class: str, css: str) -> None:
        declarations = parse_declarations(css)
        if not declarations:
            logger.warning(f"No declarations found for class {css_class}: {css!r}")
        self.classes.setdefault(css_class, {}).update(declarations)

    def resolve(self, classes: Iterable[str]) -> Dict[str, Any]:
        """i3bar fields for a widget carrying ``classes``; later classes win."""
        fields: Dict[str, Any] = {}
        for css_class in classes:
            for prop, value in self.classes.get(css_class, {}).items():
                mapping = _FIELDS.get(prop)
                if mapping is None:
                    continue
                field_name, convert = mapping
                converted = convert(value)
                if converted is None:
                    logger.debug(f"Ignoring {prop}: {value} for class {css_class}")
                    continue
                fields[field_name] = converted
        return fields

    def for_block(self, name: str) -> Dict[str, Any]:
        return self.resolve((BLOCK_CLASS, name))
