"""Core exceptions for cacheprog."""


class CacheProgError(Exception):
    """Base exception for cacheprog errors."""


class ConfigError(CacheProgError):
    """Startup configuration is missing or invalid."""


class FramingError(CacheProgError):
    """The request stream can no longer be parsed.

    Fatal for the whole session: the position in the byte stream cannot be
    trusted after a malformed record.
    """


class InvalidKeyError(CacheProgError, ValueError):
    """An action or object key is missing or malformed."""


class NotFoundError(CacheProgError):
    """Object not found in storage."""


class StorageError(CacheProgError):
    """Storage backend failure that retrying will not fix."""


class TransientStorageError(StorageError):
    """Storage backend failure worth retrying (throttling, timeouts, 5xx)."""


class RemoteStoreError(CacheProgError):
    """Remote operation failed after exhausting its retry budget."""

    def __init__(self, op: str, remote_key: str, attempts: int, cause: BaseException | None = None):
        self.op = op
        self.remote_key = remote_key
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{op} {remote_key} failed after {attempts} attempt(s): {cause}")
