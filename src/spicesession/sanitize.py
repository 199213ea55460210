"""Input validation for values that end up in generated netlists.

Component names, node names and model names are written verbatim into
SPICE text handed to the engine, so anything that could smuggle in a new
line, a comment or a dot-directive is rejected here.
"""

from __future__ import annotations

import math
import re
from pathlib import Path

from spicesession.constants import SI_SUFFIXES
from spicesession.errors import ToolError

# Identifiers: circuit ids, component names, model names
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")

# Node names allow a few extra characters SPICE accepts
_NODE_RE = re.compile(r"^[A-Za-z0-9_.$#+\-]+$")

_NUMBER_RE = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)([a-zA-Z]*)$")

MAX_IDENTIFIER_LENGTH = 128

# Maximum netlist size: 1 MB
MAX_NETLIST_SIZE = 1_000_000

# Dot-directives a rendered netlist may contain; anything else is rejected
_ALLOWED_DIRECTIVES = frozenset(
    {
        "ac",
        "tran",
        "op",
        "dc",
        "param",
        "func",
        "subckt",
        "ends",
        "model",
        "include",
        "lib",
        "global",
        "end",
        "ic",
        "nodeset",
        "options",
        "temp",
        "save",
    }
)

_DOT_DIRECTIVE = re.compile(r"^\s*\.(\w+)", re.IGNORECASE)


def validate_identifier(value: str, what: str = "name") -> str:
    """Validate an id or name used as a netlist token.

    Raises:
        ToolError: If the value is empty, too long or has unsafe characters.
    """
    if not value or not value.strip():
        raise ToolError(f"{what} must not be empty")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ToolError(f"{what} is too long (max {MAX_IDENTIFIER_LENGTH} characters)")
    if not _IDENTIFIER_RE.match(value):
        raise ToolError(
            f"Invalid {what} '{value}': only letters, digits, '_', '.' and '-' "
            f"are allowed"
        )
    return value


def validate_node_name(node: str) -> str:
    """Validate a circuit node name."""
    if not node or not _NODE_RE.match(node):
        raise ToolError(f"Invalid node name '{node}'")
    return node


def parse_spice_value(value: object, what: str = "value") -> float:
    """Convert a number or SPICE value string (``'1k'``, ``'100n'``) to float.

    Suffixes are case-insensitive; ``meg`` is 1e6 and ``m`` is 1e-3.
    Trailing unit letters after the multiplier (``'10uF'``) are ignored.
    """
    if isinstance(value, bool):
        raise ToolError(f"{what} must be a number, got a boolean")
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        m = _NUMBER_RE.match(value.strip())
        if not m:
            raise ToolError(f"Invalid {what} '{value}': not a number")
        result = float(m.group(1))
        suffix = m.group(2).lower()
        for name, mult in SI_SUFFIXES:
            if suffix.startswith(name):
                result *= mult
                break
    else:
        raise ToolError(f"{what} must be a number, got {type(value).__name__}")
    if not math.isfinite(result):
        raise ToolError(f"{what} must be finite")
    return result


def validate_format(fmt: str) -> str:
    """Validate an image output format.

    Returns:
        The lower-cased format string.

    Raises:
        ToolError: If the format is not png or svg.
    """
    allowed = ("png", "svg")
    fmt = (fmt or "").lower()
    if fmt not in allowed:
        raise ToolError(f"Invalid format '{fmt}': must be one of {', '.join(allowed)}")
    return fmt


def validate_choice(value: str, allowed: tuple[str, ...] | list[str], what: str) -> str:
    """Return *value* lower-cased if it is one of *allowed*."""
    lowered = value.lower()
    if lowered not in allowed:
        raise ToolError(
            f"Invalid {what} '{value}': must be one of {', '.join(allowed)}"
        )
    return lowered


def sanitize_netlist(netlist: str, *, allow_includes: bool = False) -> str:
    """Reject a netlist that carries directives ngspice should never see.

    Continuation lines are joined to the line they continue before the
    check, so a directive cannot be split across lines.

    Args:
        netlist: Netlist text about to be handed to the engine.
        allow_includes: Accept ``.include``/``.lib`` lines. Only for
            netlists whose includes were added from the library catalog.

    Returns:
        The netlist, unchanged.

    Raises:
        ToolError: On a disallowed directive, a backtick, or a netlist over
            the size limit.
    """
    if len(netlist) > MAX_NETLIST_SIZE:
        raise ToolError(f"Netlist too large: {len(netlist)} chars (max {MAX_NETLIST_SIZE})")

    lines: list[str] = []
    for line in netlist.splitlines():
        if line.lstrip().startswith("+") and lines:
            lines[-1] += " " + line.lstrip()[1:]
        else:
            lines.append(line)

    for lineno, line in enumerate(lines, 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("*"):
            continue
        if "`" in stripped:
            raise ToolError(f"Backtick execution on line {lineno} is not allowed")
        m = _DOT_DIRECTIVE.match(stripped)
        if not m:
            continue
        directive = m.group(1).lower()
        if directive in ("include", "lib") and not allow_includes:
            raise ToolError(f"Directive '{stripped.split()[0]}' on line {lineno} is not allowed")
        if directive not in _ALLOWED_DIRECTIVES:
            raise ToolError(
                f"Disallowed SPICE directive '{stripped.split()[0]}' on line {lineno}"
            )
    return netlist


def safe_path(base_dir: Path, user_input: str) -> Path:
    """Resolve *user_input* under *base_dir* and refuse anything outside it.

    Raises:
        ToolError: If the resolved path escapes *base_dir*.
    """
    resolved = (base_dir / user_input).resolve()
    if not resolved.is_relative_to(base_dir.resolve()):
        raise ToolError(f"Path '{user_input}' is outside the output directory {base_dir}")
    return resolved
