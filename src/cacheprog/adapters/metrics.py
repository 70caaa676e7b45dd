"""Metrics adapters."""

from ..ports.logger import LoggerPort


class NoopMetricsAdapter:
    """Metrics adapter that discards everything."""

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


class LoggingMetricsAdapter:
    """Metrics adapter that emits debug log lines."""

    def __init__(self, logger: LoggerPort):
        self.logger = logger

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.logger.debug("metric", type="counter", name=name, value=value, tags=tags or {})

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.logger.debug("metric", type="gauge", name=name, value=value, tags=tags or {})

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.logger.debug(
            "metric", type="timing", name=name, value=round(value, 4), tags=tags or {}
        )
