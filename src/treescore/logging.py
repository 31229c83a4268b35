"""Opt-in loguru logging for treescore.

The package logger is disabled on import. `enable_logging()` turns it on for
one stderr (or custom) handler and returns a `LoggingHandle`; the package is
disabled again once every handle has been released. Public `predict` calls
log at the custom PREDICTION level (25), with the model or ensemble id and
the prediction as structured extras.

Note:
    Importing this module removes loguru's default handler (ID 0) so that
    enabled records are not printed twice. Add your own loguru handlers
    after importing treescore.
"""

from __future__ import annotations

import contextlib
import sys
import threading
from typing import TYPE_CHECKING, ClassVar, Final, Literal, TextIO, TypeAlias

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

PACKAGE_NAME: Final[str] = __name__.split(".")[0]
PREDICTION_LEVEL: Final[str] = "PREDICTION"
PREDICTION_LEVEL_NUMBER: Final[int] = 25

with contextlib.suppress(ValueError):
    logger.remove(0)

try:
    logger.level(PREDICTION_LEVEL)
except ValueError:
    logger.level(PREDICTION_LEVEL, no=PREDICTION_LEVEL_NUMBER, icon="🌳")

LogLevel: TypeAlias = Literal["TRACE", "DEBUG", "INFO", "PREDICTION", "WARNING", "ERROR", "CRITICAL"]
LogFormat: TypeAlias = Literal["short", "full", "json"]

_PREFIX: Final[str] = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <10}</level> | "  # noqa: RUF027
_LOCATIONS: Final[dict[str, str]] = {
    "short": "<cyan>{function}</cyan>",
    "full": "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>",
}


class LoggingHandle:
    """A registered treescore handler, released with `disable()` or on context exit.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     model.predict({"petal width": 1.5})
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove this handler; the last one out disables the package logger."""
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.disable()


def enable_logging(
    *,
    level: LogLevel = PREDICTION_LEVEL,
    log_format: LogFormat = "short",
    sink: TextIO | None = None,
) -> LoggingHandle:
    """Enable treescore logging.

    Args:
        level (LogLevel): Minimum level shown. "PREDICTION" (default) shows
            every public `predict` call; "DEBUG" adds model loading and vote
            combination; "TRACE" follows the tree descent node by node.
        log_format (LogFormat): "short" shows the function name, "full" the
            module, function and line, and "json" writes one serialized
            record per line with its structured extras.
        sink (TextIO | None): Stream written to; stderr when None.

    Returns:
        LoggingHandle: Handle that removes the handler again.

    Examples:
        >>> with enable_logging(log_format="json"):  # doctest: +SKIP
        ...     ensemble.predict({"petal width": 1.5})
    """
    logger.enable(PACKAGE_NAME)
    stream = sys.stderr if sink is None else sink
    if log_format == "json":
        handler_id = logger.add(stream, level=level, filter=PACKAGE_NAME, serialize=True)
    else:
        handler_id = logger.add(
            stream,
            level=level,
            filter=PACKAGE_NAME,
            format=_PREFIX + _LOCATIONS[log_format] + " - <level>{message}</level>",
        )
    return LoggingHandle(handler_id)
