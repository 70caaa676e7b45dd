"""Core domain logic for cacheprog."""

from .config import CacheProgConfig
from .dedup import TransferDeduplicator
from .dispatcher import Dispatcher, SessionState
from .errors import (
    CacheProgError,
    ConfigError,
    FramingError,
    InvalidKeyError,
    NotFoundError,
    RemoteStoreError,
    StorageError,
    TransientStorageError,
)
from .models import ActionRecord, Request, Response, SessionStats, StagedObject
from .protocol import FrameDecoder, RequestReader, ResponseWriter, encode_response
from .remote import RemoteStore
from .service import CacheService

__all__ = [
    "ActionRecord",
    "CacheProgConfig",
    "CacheProgError",
    "CacheService",
    "ConfigError",
    "Dispatcher",
    "FrameDecoder",
    "FramingError",
    "InvalidKeyError",
    "NotFoundError",
    "RemoteStore",
    "RemoteStoreError",
    "Request",
    "RequestReader",
    "Response",
    "ResponseWriter",
    "SessionState",
    "SessionStats",
    "StagedObject",
    "StorageError",
    "TransferDeduplicator",
    "TransientStorageError",
    "encode_response",
]
