"""
Console logging for the Eventsocket client.

Everything in the package logs through loguru's global ``logger``. An
application calls ``configure_logging`` once with its ``ClientSettings``:
records at ``log_level`` and above are printed, and DEBUG records are also
printed for the modules listed in ``log_debug_scopes`` (for example
``["core.router"]`` to trace dispatch without the transport's chatter).
"""

import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, TextIO

from loguru import logger

from .config import ClientSettings

if TYPE_CHECKING:
    from loguru import Record

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{line} - {message}"
)

PACKAGE = "eventsocket"


def qualify_scope(scope: str) -> str:
    """Expand a short scope such as ``core.router`` to a module name."""
    scope = scope.strip()
    if scope == PACKAGE or scope.startswith(f"{PACKAGE}."):
        return scope
    return f"{PACKAGE}.{scope}"


@dataclass(slots=True, frozen=True)
class ScopedLevelFilter:
    """Passes records at ``level_no`` or above, and DEBUG records from ``scopes``."""

    level_no: int
    scopes: tuple[str, ...] = ()
    debug_no: int = 10

    def __call__(self, record: "Record") -> bool:
        record_no = record["level"].no
        if record_no >= self.level_no:
            return True
        if record_no < self.debug_no:
            return False
        name = record["name"] or ""
        return any(
            name == scope or name.startswith(f"{scope}.") for scope in self.scopes
        )


def configure_logging(
    settings: ClientSettings | None = None, *, sink: TextIO | None = None
) -> int:
    """Replace loguru's handlers with one console sink driven by ``settings``.

    Returns the loguru handler id. ``sink`` defaults to the current
    ``sys.stderr``.
    """
    if settings is None:
        settings = ClientSettings()

    level_no = logger.level(settings.log_level.upper()).no
    scopes = tuple(
        qualify_scope(scope) for scope in settings.log_debug_scopes if scope.strip()
    )
    log_filter = ScopedLevelFilter(
        level_no=level_no, scopes=scopes, debug_no=logger.level("DEBUG").no
    )

    logger.remove()
    return logger.add(
        sink if sink is not None else sys.stderr,
        level=min(level_no, log_filter.debug_no) if scopes else level_no,
        format=LOG_FORMAT,
        colorize=settings.log_colorize,
        filter=log_filter,
    )
