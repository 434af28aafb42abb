"""API client for S3-compatible object storage."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlsplit

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    HTTPClientError,
    NoCredentialsError,
)
from botocore.exceptions import ConnectionError as BotoConnectionError

from .exceptions import (
    S4APIError,
    S4AuthenticationError,
    S4ConfigError,
    S4InvalidResponseError,
    S4NetworkError,
    S4NotFoundError,
    S4RateLimitError,
    S4ServerError,
)
from .models import ListPage, ObjectInfo
from .utils import (
    DEFAULT_TIMEOUT,
    MTIME_METADATA_KEY,
    STREAM_CHUNK_SIZE,
    format_mtime,
    parse_mtime,
    to_timestamp,
)

if TYPE_CHECKING:
    from .config import AliasConfig

logger = logging.getLogger(__name__)

RATE_LIMIT_CODES = {"SlowDown", "TooManyRequests", "RequestLimitExceeded"}
NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NoSuchUpload", "NotFound"}


def map_client_error(error: ClientError, operation: str) -> S4APIError:
    """Translate a botocore ``ClientError`` into the matching exception."""
    response = error.response or {}
    details = response.get("Error", {})
    metadata = response.get("ResponseMetadata", {})
    status_code = metadata.get("HTTPStatusCode")
    code = details.get("Code", "")
    message = details.get("Message", "")

    detail = f"status {status_code}"
    if code:
        detail = f"{detail} {code}"
    if message:
        detail = f"{detail}: {message}"
    detail = f"{operation} ({detail})"

    if status_code == 429 or code in RATE_LIMIT_CODES:
        retry_after = metadata.get("HTTPHeaders", {}).get("retry-after")
        return S4RateLimitError(
            f"Rate limit exceeded: {detail}",
            status_code=status_code,
            code=code,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if status_code in (401, 403):
        return S4AuthenticationError(
            f"Access denied: {detail}", status_code=status_code, code=code
        )
    if status_code == 404 or code in NOT_FOUND_CODES:
        return S4NotFoundError(f"Not found: {detail}", status_code=status_code, code=code)
    # CompleteMultipartUpload reports InternalError inside a 200 response
    if (status_code is not None and status_code >= 500) or code == "InternalError":
        return S4ServerError(f"Server error: {detail}", status_code=status_code, code=code)
    return S4APIError(f"Request failed: {detail}", status_code=status_code, code=code)


class S3Client:
    """Client for the S3 API, backed by a boto3 ``s3`` client.

    botocore's own retries are disabled. Callers wrap calls in a
    :class:`~pys4.retry.RetryPolicy`, which retries errors flagged
    ``retryable``.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        path_style: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
        client: Any = None,
    ):
        """Initialize S3 client.

        Args:
            endpoint: Endpoint URL (scheme defaults to https)
            access_key: Access key ID
            secret_key: Secret access key
            region: Signing region (default: us-east-1)
            path_style: Address buckets as ``host/bucket`` instead of
                ``bucket.host``
            timeout: Connect and read timeout in seconds (default: 30.0)
            verify: Verify TLS certificates
            client: Pre-built boto3 S3 client (used by tests)
        """
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        if not urlsplit(endpoint).netloc:
            raise S4ConfigError(f"Invalid endpoint: {endpoint}")

        self.endpoint = endpoint
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.path_style = path_style
        self.timeout = timeout
        self.verify = verify
        self._client = client

    @classmethod
    def from_alias(cls, alias: AliasConfig, **kwargs: Any) -> S3Client:
        """Create a client from a stored alias."""
        return cls(
            endpoint=alias.endpoint,
            access_key=alias.access_key,
            secret_key=alias.secret_key,
            region=alias.region,
            path_style=alias.path_style,
            **kwargs,
        )

    def botocore_config(self) -> Config:
        """Addressing style, timeouts and retry settings for the boto3 client."""
        return Config(
            region_name=self.region,
            signature_version="s3v4",
            s3={"addressing_style": "path" if self.path_style else "virtual"},
            connect_timeout=self.timeout,
            read_timeout=self.timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )

    @property
    def client(self) -> Any:
        """boto3 S3 client (lazy initialization)."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                verify=self.verify,
                config=self.botocore_config(),
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> S3Client:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _call(self, operation: str, target: str, **params: Any) -> dict[str, Any]:
        """Invoke one boto3 operation and map its errors.

        Args:
            operation: boto3 method name (e.g. ``list_objects_v2``)
            target: Bucket/key shown in error messages
            **params: Operation parameters

        Returns:
            The parsed response

        Raises:
            S4NetworkError: On connection errors and timeouts
            S4APIError: On error responses
        """
        logger.debug("%s %s", operation, target)
        try:
            return getattr(self.client, operation)(**params)
        except ClientError as e:
            raise map_client_error(e, f"{operation} {target}") from e
        except (BotoConnectionError, HTTPClientError) as e:
            raise S4NetworkError(f"Network error during {operation} {target}: {e}") from e
        except NoCredentialsError as e:
            raise S4AuthenticationError(f"No credentials for {target}: {e}") from e
        except BotoCoreError as e:
            raise S4APIError(f"{operation} {target} failed: {e}") from e

    # =========================
    # Bucket Operations
    # =========================

    def list_buckets(self) -> list[dict[str, Any]]:
        """List all buckets owned by the credentials.

        Returns:
            List of dicts with ``name`` and ``created`` (Unix timestamp)
        """
        response = self._call("list_buckets", self.endpoint)
        return [
            {"name": bucket["Name"], "created": to_timestamp(bucket.get("CreationDate"))}
            for bucket in response.get("Buckets", [])
        ]

    def make_bucket(self, bucket: str) -> None:
        """Create a bucket in the client's region."""
        params: dict[str, Any] = {"Bucket": bucket}
        if self.region and self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self._call("create_bucket", bucket, **params)

    def remove_bucket(self, bucket: str) -> None:
        """Delete an empty bucket."""
        self._call("delete_bucket", bucket, Bucket=bucket)

    # =========================
    # Object Operations
    # =========================

    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        continuation_token: str | None = None,
        max_keys: int = 1000,
        delimiter: str | None = None,
    ) -> ListPage:
        """Fetch one page of ListObjectsV2.

        Pages are fetched one call at a time so that each page can be
        retried on its own.

        Args:
            bucket: Bucket name
            prefix: Only keys starting with this prefix
            continuation_token: Token from the previous page
            max_keys: Page size
            delimiter: Group keys by this delimiter (e.g. "/")

        Returns:
            ListPage of :class:`ObjectInfo` with the next continuation
            token, or None on the last page

        Raises:
            S4InvalidResponseError: If a truncated page carries no
                continuation token
        """
        params: dict[str, Any] = {"Bucket": bucket, "MaxKeys": max_keys}
        if prefix:
            params["Prefix"] = prefix
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        if delimiter:
            params["Delimiter"] = delimiter

        response = self._call("list_objects_v2", f"{bucket}/{prefix}", **params)

        objects = [
            ObjectInfo(
                key=item["Key"],
                size=int(item.get("Size", 0)),
                last_modified=to_timestamp(item.get("LastModified")),
                etag=item.get("ETag", "").strip('"'),
            )
            for item in response.get("Contents", [])
        ]
        prefixes = [p["Prefix"] for p in response.get("CommonPrefixes", [])]

        next_token = None
        if response.get("IsTruncated"):
            next_token = response.get("NextContinuationToken") or None
            if next_token is None:
                raise S4InvalidResponseError(
                    f"Listing of {bucket}/{prefix} is truncated but has no "
                    "continuation token"
                )

        return ListPage(entries=objects, next_token=next_token, prefixes=prefixes)

    def head_object(self, bucket: str, key: str) -> ObjectInfo:
        """Get metadata of a single object.

        ``mtime`` is the modification time stored with the object by
        :meth:`put_object`, or None when the object carries none.
        """
        response = self._call("head_object", f"{bucket}/{key}", Bucket=bucket, Key=key)
        return ObjectInfo(
            key=key,
            size=int(response.get("ContentLength", 0)),
            last_modified=to_timestamp(response.get("LastModified")),
            etag=response.get("ETag", "").strip('"'),
            content_type=response.get("ContentType"),
            mtime=parse_mtime(response.get("Metadata", {}).get(MTIME_METADATA_KEY)),
        )

    def get_object(
        self,
        bucket: str,
        key: str,
        offset: int = 0,
        length: int | None = None,
    ) -> bytes:
        """Read an object, or a byte range of it, into memory.

        Args:
            bucket: Bucket name
            key: Object key
            offset: First byte to read
            length: Number of bytes (None reads to the end)

        Returns:
            Object content
        """
        params: dict[str, Any] = {"Bucket": bucket, "Key": key}
        if offset or length is not None:
            end = "" if length is None else str(offset + length - 1)
            params["Range"] = f"bytes={offset}-{end}"
        response = self._call("get_object", f"{bucket}/{key}", **params)
        body = response["Body"]
        try:
            return body.read()
        except (BotoConnectionError, HTTPClientError) as e:
            raise S4NetworkError(f"Network error while reading {key}: {e}") from e
        finally:
            body.close()

    def iter_object(
        self, bucket: str, key: str, chunk_size: int = STREAM_CHUNK_SIZE
    ) -> Iterator[bytes]:
        """Stream an object in chunks."""
        response = self._call("get_object", f"{bucket}/{key}", Bucket=bucket, Key=key)
        body = response["Body"]
        try:
            yield from body.iter_chunks(chunk_size=chunk_size)
        except (BotoConnectionError, HTTPClientError) as e:
            raise S4NetworkError(f"Network error while reading {key}: {e}") from e
        finally:
            body.close()

    @staticmethod
    def _metadata(last_modified: Optional[float]) -> dict[str, str]:
        if last_modified is None:
            return {}
        return {MTIME_METADATA_KEY: format_mtime(last_modified)}

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        last_modified: Optional[float] = None,
    ) -> str:
        """Upload an object in a single request.

        Args:
            bucket: Bucket name
            key: Object key
            data: Object content
            content_type: MIME type
            last_modified: Source modification time, stored as metadata

        Returns:
            ETag of the stored object
        """
        response = self._call(
            "put_object",
            f"{bucket}/{key}",
            Bucket=bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            Metadata=self._metadata(last_modified),
        )
        return response.get("ETag", "").strip('"')

    def copy_object(
        self, source_bucket: str, source_key: str, bucket: str, key: str
    ) -> None:
        """Server-side copy within one endpoint."""
        self._call(
            "copy_object",
            f"{bucket}/{key}",
            Bucket=bucket,
            Key=key,
            CopySource={"Bucket": source_bucket, "Key": source_key},
        )

    def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object (succeeds if it does not exist)."""
        self._call("delete_object", f"{bucket}/{key}", Bucket=bucket, Key=key)

    # =========================
    # Multipart Operations
    # =========================

    def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        content_type: str = "application/octet-stream",
        last_modified: Optional[float] = None,
    ) -> str:
        """Start a multipart upload.

        Returns:
            Upload ID
        """
        response = self._call(
            "create_multipart_upload",
            f"{bucket}/{key}",
            Bucket=bucket,
            Key=key,
            ContentType=content_type,
            Metadata=self._metadata(last_modified),
        )
        upload_id = response.get("UploadId")
        if not upload_id:
            raise S4InvalidResponseError("Failed to initialize multipart upload")
        return upload_id

    def upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> str:
        """Upload one part of a multipart upload.

        Returns:
            ETag of the part
        """
        response = self._call(
            "upload_part",
            f"{bucket}/{key}",
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
        )
        etag = response.get("ETag", "")
        if not etag:
            raise S4InvalidResponseError(f"No ETag returned for part {part_number}")
        return etag

    def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        parts: list[tuple[int, str]],
    ) -> str:
        """Commit a multipart upload.

        Args:
            bucket: Bucket name
            key: Object key
            upload_id: Upload ID
            parts: (part_number, etag) pairs

        Returns:
            ETag of the assembled object
        """
        response = self._call(
            "complete_multipart_upload",
            f"{bucket}/{key}",
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [
                    {"PartNumber": part_number, "ETag": etag}
                    for part_number, etag in sorted(parts)
                ]
            },
        )
        return response.get("ETag", "").strip('"')

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart upload and discard uploaded parts."""
        self._call(
            "abort_multipart_upload",
            f"{bucket}/{key}",
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
        )
