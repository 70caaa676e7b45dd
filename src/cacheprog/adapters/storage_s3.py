"""S3 storage adapter."""

from pathlib import Path
from typing import Any, BinaryIO

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..core.errors import NotFoundError, StorageError, TransientStorageError
from ..ports.storage import ObjectHead

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
TRANSIENT_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
    "RequestLimitExceeded",
    "500",
    "502",
    "503",
    "504",
}
TRANSIENT_BOTOCORE_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _status_code(error: ClientError) -> int:
    return int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def translate_error(error: Exception, key: str) -> Exception:
    """Map a boto3 exception onto the storage error hierarchy."""
    if isinstance(error, ClientError):
        code = _error_code(error)
        if code in NOT_FOUND_CODES:
            return NotFoundError(f"Object not found: {key}")
        if code in TRANSIENT_CODES or _status_code(error) >= 500:
            return TransientStorageError(f"{code or 'error'} on {key}: {error}")
        return StorageError(f"{code or 'error'} on {key}: {error}")
    if isinstance(error, TRANSIENT_BOTOCORE_ERRORS):
        return TransientStorageError(f"network error on {key}: {error}")
    return StorageError(f"storage error on {key}: {error}")


class _BodyStream:
    """Wraps a StreamingBody so mid-transfer failures become storage errors."""

    def __init__(self, body: Any, key: str):
        self._body = body
        self._key = key

    def read(self, size: int = -1) -> bytes:
        try:
            return self._body.read() if size < 0 else self._body.read(size)
        except (BotoCoreError, ClientError, OSError) as e:
            raise TransientStorageError(f"transfer of {self._key} interrupted: {e}") from e

    def close(self) -> None:
        self._body.close()


class S3StorageAdapter:
    """StoragePort implementation backed by one S3 bucket."""

    def __init__(
        self,
        bucket: str,
        client: Any = None,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        profile: str | None = None,
        timeout: float = 30.0,
        max_pool_connections: int = 16,
    ):
        self.bucket = bucket
        if client is None:
            session = boto3.session.Session(profile_name=profile) if profile else boto3.session.Session()
            config = BotoConfig(
                connect_timeout=timeout,
                read_timeout=timeout,
                # Retries are owned by RemoteStore
                retries={"max_attempts": 1, "mode": "standard"},
                max_pool_connections=max_pool_connections,
            )
            client_args = {"region_name": region, "endpoint_url": endpoint_url}
            client = session.client(
                "s3", config=config, **{k: v for k, v in client_args.items() if v}
            )
        self.client = client

    def head(self, key: str) -> ObjectHead | None:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            translated = translate_error(e, key)
            if isinstance(translated, NotFoundError):
                return None
            raise translated from e
        return ObjectHead(
            key=key,
            size=int(response.get("ContentLength", 0)),
            etag=str(response.get("ETag", "")).strip('"'),
            last_modified=response.get("LastModified"),
            metadata=response.get("Metadata", {}),
        )

    def get(self, key: str) -> BinaryIO:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, key) from e
        return _BodyStream(response["Body"], key)  # type: ignore[return-value]

    def put(self, key: str, body: BinaryIO | Path | bytes, metadata: dict[str, str]) -> None:
        try:
            if isinstance(body, Path):
                with open(body, "rb") as f:
                    self.client.put_object(Bucket=self.bucket, Key=key, Body=f, Metadata=metadata)
            else:
                self.client.put_object(Bucket=self.bucket, Key=key, Body=body, Metadata=metadata)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, key) from e

    def list_objects(
        self,
        prefix: str = "",
        max_keys: int = 1000,
        start_after: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": max_keys}
        if start_after:
            params["ContinuationToken"] = start_after
        try:
            response = self.client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, prefix) from e
        return {
            "objects": [
                {"key": obj["Key"], "size": int(obj.get("Size", 0))}
                for obj in response.get("Contents", [])
            ],
            "is_truncated": bool(response.get("IsTruncated")),
            "next_continuation_token": response.get("NextContinuationToken"),
        }

    def check_bucket(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            translated = translate_error(e, self.bucket)
            if isinstance(translated, NotFoundError):
                raise StorageError(f"Bucket not found: {self.bucket}") from e
            raise translated from e
