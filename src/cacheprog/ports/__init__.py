"""Port interfaces."""

from .cache import CachePort
from .clock import ClockPort
from .logger import LoggerPort
from .metrics import MetricsPort
from .storage import ObjectHead, StoragePort

__all__ = [
    "CachePort",
    "ClockPort",
    "LoggerPort",
    "MetricsPort",
    "ObjectHead",
    "StoragePort",
]
