"""Unit tests for the S3 API client."""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from pys4.api import S3Client, map_client_error
from pys4.config import AliasConfig
from pys4.exceptions import (
    S4APIError,
    S4AuthenticationError,
    S4ConfigError,
    S4InvalidResponseError,
    S4ListingError,
    S4NetworkError,
    S4NotFoundError,
    S4RateLimitError,
    S4ServerError,
)
from pys4.models import Scope
from pys4.retry import NO_RETRY
from pys4.sync.operations import RemoteStore
from pys4.sync.scanner import ObjectLister

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def client_error(code: str, status: int, message: str = "", headers=None) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status, "HTTPHeaders": headers or {}},
        },
        "TestOperation",
    )


@pytest.fixture
def boto():
    """Stand-in for the boto3 S3 client."""
    return Mock()


@pytest.fixture
def client(boto):
    return S3Client(
        "http://localhost:9000", "AKIDEXAMPLE", "secret", path_style=True, client=boto
    )


class TestS3Client:
    """Tests for S3Client initialization."""

    def test_scheme_defaults_to_https(self):
        client = S3Client("s3.example.com", "a", "b")
        assert client.endpoint == "https://s3.example.com"

    def test_invalid_endpoint(self):
        with pytest.raises(S4ConfigError, match="Invalid endpoint"):
            S3Client("http://", "a", "b")

    def test_from_alias(self):
        alias = AliasConfig(
            endpoint="http://minio:9000",
            access_key="a",
            secret_key="b",
            region="eu-west-1",
            path_style=True,
        )
        client = S3Client.from_alias(alias, timeout=5.0)
        assert client.region == "eu-west-1"
        assert client.path_style is True
        assert client.timeout == 5.0

    def test_botocore_config(self):
        """Test addressing style, timeouts and disabled botocore retries."""
        config = S3Client("http://minio:9000", "a", "b", path_style=True, timeout=5.0).botocore_config()
        assert config.s3 == {"addressing_style": "path"}
        assert config.connect_timeout == 5.0
        assert config.read_timeout == 5.0
        assert config.retries == {"total_max_attempts": 1, "mode": "standard"}

        virtual = S3Client("https://s3.example.com", "a", "b").botocore_config()
        assert virtual.s3 == {"addressing_style": "virtual"}

    def test_boto3_client_is_created_lazily(self):
        client = S3Client("http://minio:9000", "AK", "SK", verify=False)
        with patch("pys4.api.boto3.client") as factory:
            assert client.client is factory.return_value
            assert client.client is factory.return_value

        factory.assert_called_once()
        args, kwargs = factory.call_args
        assert args == ("s3",)
        assert kwargs["endpoint_url"] == "http://minio:9000"
        assert kwargs["aws_access_key_id"] == "AK"
        assert kwargs["aws_secret_access_key"] == "SK"
        assert kwargs["verify"] is False

    def test_context_manager_closes(self, client, boto):
        with client:
            pass
        boto.close.assert_called_once()
        assert client._client is None


class TestErrorMapping:
    """Tests for mapping botocore errors onto pys4 exceptions."""

    def test_not_found(self, client, boto):
        boto.get_object.side_effect = client_error("NoSuchKey", 404, "gone")
        with pytest.raises(S4NotFoundError, match="NoSuchKey: gone") as exc_info:
            client.get_object("bucket", "missing")
        assert exc_info.value.code == "NoSuchKey"
        assert exc_info.value.status_code == 404

    def test_head_not_found(self, client, boto):
        """Test HEAD errors, which carry only the status as their code."""
        boto.head_object.side_effect = client_error("404", 404)
        with pytest.raises(S4NotFoundError):
            client.head_object("bucket", "missing")

    @pytest.mark.parametrize("status", [401, 403])
    def test_access_denied(self, client, boto, status):
        boto.list_buckets.side_effect = client_error("AccessDenied", status)
        with pytest.raises(S4AuthenticationError):
            client.list_buckets()

    def test_server_error_is_retryable(self, client, boto):
        boto.head_object.side_effect = client_error("ServiceUnavailable", 503)
        with pytest.raises(S4ServerError) as exc_info:
            client.head_object("bucket", "a.txt")
        assert exc_info.value.retryable is True

    def test_internal_error_in_200_body(self):
        error = map_client_error(client_error("InternalError", 200, "retry"), "complete")
        assert isinstance(error, S4ServerError)
        assert error.retryable is True

    def test_rate_limit_with_retry_after(self, client, boto):
        boto.put_object.side_effect = client_error(
            "SlowDown", 429, headers={"retry-after": "3"}
        )
        with pytest.raises(S4RateLimitError) as exc_info:
            client.put_object("bucket", "a.txt", b"data")
        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.retryable is True

    def test_slowdown_code_is_rate_limit(self, client, boto):
        boto.delete_object.side_effect = client_error("SlowDown", 503)
        with pytest.raises(S4RateLimitError):
            client.delete_object("bucket", "a.txt")

    def test_other_client_error(self, client, boto):
        boto.delete_bucket.side_effect = client_error("BucketNotEmpty", 409)
        with pytest.raises(S4APIError, match="BucketNotEmpty") as exc_info:
            client.remove_bucket("bucket")
        assert exc_info.value.retryable is False

    def test_network_error(self, client, boto):
        boto.list_buckets.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:9000"
        )
        with pytest.raises(S4NetworkError, match="Could not connect") as exc_info:
            client.list_buckets()
        assert exc_info.value.retryable is True

    def test_timeout(self, client, boto):
        boto.list_buckets.side_effect = ReadTimeoutError(endpoint_url="http://localhost:9000")
        with pytest.raises(S4NetworkError, match="Read timeout"):
            client.list_buckets()

    def test_missing_credentials(self, client, boto):
        boto.list_buckets.side_effect = NoCredentialsError()
        with pytest.raises(S4AuthenticationError):
            client.list_buckets()


class TestBuckets:
    """Tests for bucket operations."""

    def test_list_buckets(self, client, boto):
        boto.list_buckets.return_value = {
            "Buckets": [
                {"Name": "alpha", "CreationDate": at(10)},
                {"Name": "beta", "CreationDate": at(20)},
            ]
        }
        assert client.list_buckets() == [
            {"name": "alpha", "created": 10.0},
            {"name": "beta", "created": 20.0},
        ]

    def test_make_bucket_default_region(self, client, boto):
        client.make_bucket("photos")
        boto.create_bucket.assert_called_once_with(Bucket="photos")

    def test_make_bucket_with_location(self, boto):
        client = S3Client("http://minio:9000", "a", "b", region="eu-west-1", client=boto)
        client.make_bucket("photos")
        boto.create_bucket.assert_called_once_with(
            Bucket="photos",
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )

    def test_remove_bucket(self, client, boto):
        client.remove_bucket("photos")
        boto.delete_bucket.assert_called_once_with(Bucket="photos")


class TestObjects:
    """Tests for object operations."""

    def test_list_objects_page(self, client, boto):
        boto.list_objects_v2.return_value = {
            "IsTruncated": True,
            "NextContinuationToken": "token-2",
            "Contents": [
                {"Key": "a.txt", "Size": 5, "LastModified": at(100), "ETag": '"abc"'},
                {"Key": "b.bin", "Size": 7, "LastModified": at(200), "ETag": '"def-2"'},
            ],
            "CommonPrefixes": [{"Prefix": "dir/"}],
        }

        page = client.list_objects("b", prefix="p/", continuation_token="token-1", max_keys=2)

        boto.list_objects_v2.assert_called_once_with(
            Bucket="b", MaxKeys=2, Prefix="p/", ContinuationToken="token-1"
        )
        assert [o.key for o in page.entries] == ["a.txt", "b.bin"]
        assert page.entries[0].last_modified == 100.0
        assert page.entries[0].md5 == "abc"
        assert page.entries[1].md5 is None
        assert page.prefixes == ["dir/"]
        assert page.next_token == "token-2"

    def test_list_objects_last_page(self, client, boto):
        boto.list_objects_v2.return_value = {"IsTruncated": False, "KeyCount": 0}
        page = client.list_objects("b")
        assert page.entries == []
        assert page.is_last

    def test_truncated_page_without_token(self, client, boto):
        boto.list_objects_v2.return_value = {
            "IsTruncated": True,
            "Contents": [{"Key": "a.txt", "Size": 1, "LastModified": EPOCH, "ETag": '"x"'}],
        }
        with pytest.raises(S4InvalidResponseError, match="no continuation token"):
            client.list_objects("bkt")

    def test_truncated_page_without_token_fails_listing(self, client, boto):
        """Test that an incomplete remote listing never reaches the planner."""
        boto.list_objects_v2.return_value = {
            "IsTruncated": True,
            "Contents": [{"Key": "a.txt", "Size": 1, "LastModified": EPOCH, "ETag": '"x"'}],
        }
        store = RemoteStore(client, Scope.remote("minio", "bkt"))

        with pytest.raises(S4ListingError, match="no continuation token"):
            ObjectLister(retry=NO_RETRY).list(store)

    def test_head_object(self, client, boto):
        boto.head_object.return_value = {
            "ContentLength": 42,
            "LastModified": at(30),
            "ETag": '"abc"',
            "ContentType": "text/plain",
            "Metadata": {"mtime": "12.500000"},
        }
        info = client.head_object("bucket", "a.txt")
        boto.head_object.assert_called_once_with(Bucket="bucket", Key="a.txt")
        assert info.size == 42
        assert info.last_modified == 30.0
        assert info.etag == "abc"
        assert info.content_type == "text/plain"
        assert info.mtime == 12.5

    def test_head_object_without_metadata(self, client, boto):
        boto.head_object.return_value = {"ContentLength": 1, "LastModified": at(30)}
        assert client.head_object("bucket", "a.txt").mtime is None

    def test_get_object_range(self, client, boto):
        body = Mock()
        body.read.return_value = b"cde"
        boto.get_object.return_value = {"Body": body}

        assert client.get_object("bucket", "a.txt", offset=2, length=3) == b"cde"
        boto.get_object.assert_called_once_with(Bucket="bucket", Key="a.txt", Range="bytes=2-4")
        body.close.assert_called_once()

    def test_get_object_whole(self, client, boto):
        body = Mock()
        body.read.return_value = b"hello"
        boto.get_object.return_value = {"Body": body}

        assert client.get_object("bucket", "a.txt") == b"hello"
        boto.get_object.assert_called_once_with(Bucket="bucket", Key="a.txt")

    def test_iter_object(self, client, boto):
        body = Mock()
        body.iter_chunks.return_value = iter([b"xxxx", b"xxxx", b"xx"])
        boto.get_object.return_value = {"Body": body}

        assert b"".join(client.iter_object("bucket", "a.txt", chunk_size=4)) == b"x" * 10
        body.iter_chunks.assert_called_once_with(chunk_size=4)
        body.close.assert_called_once()

    def test_put_object(self, client, boto):
        boto.put_object.return_value = {"ETag": '"etag-1"'}

        etag = client.put_object("bucket", "a.txt", b"hello", last_modified=1700000000.5)

        assert etag == "etag-1"
        boto.put_object.assert_called_once_with(
            Bucket="bucket",
            Key="a.txt",
            Body=b"hello",
            ContentType="application/octet-stream",
            Metadata={"mtime": "1700000000.500000"},
        )

    def test_put_object_without_mtime(self, client, boto):
        boto.put_object.return_value = {}
        client.put_object("bucket", "a.txt", b"hello")
        assert boto.put_object.call_args.kwargs["Metadata"] == {}

    def test_copy_object(self, client, boto):
        client.copy_object("src", "dir/a b.txt", "dst", "b.txt")
        boto.copy_object.assert_called_once_with(
            Bucket="dst", Key="b.txt", CopySource={"Bucket": "src", "Key": "dir/a b.txt"}
        )

    def test_delete_object(self, client, boto):
        client.delete_object("bucket", "a.txt")
        boto.delete_object.assert_called_once_with(Bucket="bucket", Key="a.txt")


class TestMultipart:
    """Tests for multipart upload calls."""

    def test_create_multipart_upload(self, client, boto):
        boto.create_multipart_upload.return_value = {"UploadId": "upload-1"}

        upload_id = client.create_multipart_upload("b", "big.bin", last_modified=60.0)

        assert upload_id == "upload-1"
        boto.create_multipart_upload.assert_called_once_with(
            Bucket="b",
            Key="big.bin",
            ContentType="application/octet-stream",
            Metadata={"mtime": "60.000000"},
        )

    def test_create_without_upload_id(self, client, boto):
        boto.create_multipart_upload.return_value = {}
        with pytest.raises(S4InvalidResponseError):
            client.create_multipart_upload("b", "big.bin")

    def test_upload_part(self, client, boto):
        boto.upload_part.return_value = {"ETag": '"part-etag"'}

        assert client.upload_part("b", "big.bin", "upload-1", 2, b"data") == '"part-etag"'
        boto.upload_part.assert_called_once_with(
            Bucket="b", Key="big.bin", UploadId="upload-1", PartNumber=2, Body=b"data"
        )

    def test_upload_part_without_etag(self, client, boto):
        boto.upload_part.return_value = {}
        with pytest.raises(S4InvalidResponseError, match="part 3"):
            client.upload_part("b", "big.bin", "upload-1", 3, b"data")

    def test_complete_orders_parts(self, client, boto):
        boto.complete_multipart_upload.return_value = {"ETag": '"final-2"'}

        etag = client.complete_multipart_upload(
            "b", "big.bin", "upload-1", [(2, '"e2"'), (1, '"e1"')]
        )

        assert etag == "final-2"
        boto.complete_multipart_upload.assert_called_once_with(
            Bucket="b",
            Key="big.bin",
            UploadId="upload-1",
            MultipartUpload={
                "Parts": [
                    {"PartNumber": 1, "ETag": '"e1"'},
                    {"PartNumber": 2, "ETag": '"e2"'},
                ]
            },
        )

    def test_abort(self, client, boto):
        client.abort_multipart_upload("b", "big.bin", "upload-1")
        boto.abort_multipart_upload.assert_called_once_with(
            Bucket="b", Key="big.bin", UploadId="upload-1"
        )
