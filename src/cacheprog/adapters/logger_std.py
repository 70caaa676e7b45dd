"""Standard logging adapter."""

import json
import logging
import sys
from pathlib import Path
from typing import Any

LOGGER_NAME = "cacheprog"


class StdLoggerAdapter:
    """Logger built on the standard logging module.

    Never writes to stdout: stdout carries protocol records.
    """

    def __init__(self, name: str = LOGGER_NAME, level: str = "INFO", log_file: Path | None = None):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self.logger.propagate = False

        if not self.logger.handlers:
            handler: logging.Handler
            if log_file is not None:
                handler = logging.FileHandler(log_file)
            else:
                handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
            )
            self.logger.addHandler(handler)

    def _format(self, message: str, fields: dict[str, Any]) -> str:
        if not fields:
            return message
        return f"{message} {json.dumps(fields, sort_keys=True, default=str)}"

    def debug(self, message: str, **kwargs: Any) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self._format(message, kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(self._format(message, kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(self._format(message, kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(self._format(message, kwargs))

    def log_operation(
        self,
        op: str,
        key: str,
        sizes: dict[str, int],
        durations: dict[str, float],
        cache_hit: bool = False,
    ) -> None:
        """Log a completed cache operation at debug level."""
        self.debug(
            f"{op} complete",
            op=op,
            key=key,
            sizes=sizes,
            durations={name: round(value, 4) for name, value in durations.items()},
            cache_hit=cache_hit,
        )
