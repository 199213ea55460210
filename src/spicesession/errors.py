"""Caller-visible error kind for spicesession tools."""

from __future__ import annotations

import logging


class ToolError(ValueError):
    """Validation failure reported back to the client as a failed tool call.

    Every rejection a caller can see (unknown tool, missing argument,
    unknown circuit or signal, bad sweep range, engine fault) is raised as
    this one kind and distinguished only by its message.
    """


def engine_error(exc: Exception, log: logging.Logger, tool: str) -> ToolError:
    """Log an engine fault and return it as a :class:`ToolError`.

    The engine's own message is preserved so callers can act on it.
    Use as ``raise engine_error(e, logger, "run_ac_analysis") from e``.
    """
    if isinstance(exc, ToolError):
        return exc
    log.debug("Engine fault in %s", tool, exc_info=exc)
    log.error("%s failed: %s", tool, exc)
    message = str(exc) or type(exc).__name__
    return ToolError(message)
