"""Object store adapters giving local and remote trees one interface."""

import hashlib
import logging
import os
import shutil
import stat as stat_module
import tempfile
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path
from typing import Callable, Optional

from ..api import S3Client
from ..exceptions import S4ListingError, S4NotFoundError, S4TransferError
from ..models import ListPage, ObjectEntry, ObjectInfo, Origin, Scope
from ..utils import (
    DEFAULT_MULTIPART_THRESHOLD,
    STREAM_CHUNK_SIZE,
    join_key,
    relative_key,
)

logger = logging.getLogger(__name__)

# Hidden directory under a local root holding in-progress multipart parts
STAGING_DIR_NAME = ".s4-multipart"


class ObjectStore(ABC):
    """Capability surface the sync engine needs from one tree.

    Keys passed to and returned from a store are relative to its scope.
    """

    scope: Scope

    @property
    def origin(self) -> Origin:
        return self.scope.origin

    @abstractmethod
    def list_page(self, token: Optional[str] = None) -> ListPage:
        """Return one page of :class:`ObjectEntry` objects (unordered)."""

    @abstractmethod
    def stat(self, key: str) -> ObjectEntry:
        """Metadata of one object; raises S4NotFoundError if missing."""

    @abstractmethod
    def read(self, key: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        """Read an object or a byte range of it."""

    @abstractmethod
    def get(self, key: str) -> Iterator[bytes]:
        """Stream an object in chunks."""

    @abstractmethod
    def put(
        self, key: str, data: bytes, size: int, last_modified: Optional[float] = None
    ) -> None:
        """Store an object in one request."""

    @abstractmethod
    def initiate_multipart(self, key: str, last_modified: Optional[float] = None) -> str:
        """Start a chunked upload and return its session id."""

    @abstractmethod
    def upload_part(self, upload_id: str, key: str, index: int, data: bytes) -> str:
        """Upload part ``index`` (1-based) and return its ETag."""

    @abstractmethod
    def complete_multipart(
        self,
        upload_id: str,
        key: str,
        parts: list[tuple[int, str]],
        last_modified: Optional[float] = None,
    ) -> None:
        """Commit the uploaded parts as one object."""

    @abstractmethod
    def abort_multipart(self, upload_id: str, key: str) -> None:
        """Discard a chunked upload and its parts."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove an object (no error if it is already gone)."""

    def __str__(self) -> str:
        return str(self.scope)


def _md5_file(path: Path) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(STREAM_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class LocalStore(ObjectStore):
    """A directory tree on the local filesystem.

    Symbolic links are never followed: symlinked files and directories are
    left out of listings. Files up to ``checksum_limit`` bytes get an MD5
    content hash; larger files are compared by size and mtime.

    A missing root lists as an empty tree when ``missing_ok`` is set (a
    destination that does not exist yet). Otherwise listing it raises
    :class:`S4ListingError`.
    """

    def __init__(
        self,
        root: Path,
        checksum_limit: int = DEFAULT_MULTIPART_THRESHOLD,
        missing_ok: bool = True,
    ):
        self.root = Path(root)
        self.scope = Scope.local(self.root)
        self.checksum_limit = checksum_limit
        self.missing_ok = missing_ok

    def _path(self, key: str) -> Path:
        path = self.root.joinpath(*key.split("/"))
        root = os.path.abspath(self.root)
        if os.path.commonpath([root, os.path.abspath(path)]) != root or ".." in key.split("/"):
            raise S4TransferError(f"Key escapes the destination root: {key}", key=key)
        return path

    def _staging_dir(self, upload_id: str) -> Path:
        return self.root / STAGING_DIR_NAME / upload_id

    def _entry(self, key: str, st: os.stat_result, path: Path) -> ObjectEntry:
        content_hash = None
        if st.st_size <= self.checksum_limit:
            content_hash = _md5_file(path)
        return ObjectEntry(
            key=key,
            size=st.st_size,
            last_modified=st.st_mtime,
            origin=Origin.LOCAL,
            content_hash=content_hash,
        )

    def _walk(self, directory: Path, entries: list[ObjectEntry]) -> None:
        with os.scandir(directory) as it:
            for item in it:
                if item.is_symlink():
                    logger.debug(f"Skipping symlink: {item.path}")
                    continue
                if item.is_dir(follow_symlinks=False):
                    if directory == self.root and item.name == STAGING_DIR_NAME:
                        continue
                    self._walk(Path(item.path), entries)
                elif item.is_file(follow_symlinks=False):
                    path = Path(item.path)
                    key = path.relative_to(self.root).as_posix()
                    entries.append(self._entry(key, item.stat(follow_symlinks=False), path))

    def list_page(self, token: Optional[str] = None) -> ListPage:
        if not self.root.exists():
            if self.missing_ok:
                return ListPage()
            raise S4ListingError(f"Directory does not exist: {self.root}")
        entries: list[ObjectEntry] = []
        try:
            self._walk(self.root, entries)
        except OSError as e:
            raise S4ListingError(f"Failed to list {self.root}: {e}") from e
        return ListPage(entries=entries)

    def stat(self, key: str) -> ObjectEntry:
        path = self._path(key)
        try:
            st = os.lstat(path)
        except FileNotFoundError as e:
            raise S4NotFoundError(f"Not found: {path}", status_code=404) from e
        if not stat_module.S_ISREG(st.st_mode):
            raise S4NotFoundError(f"Not a regular file: {path}", status_code=404)
        return self._entry(key, st, path)

    def read(self, key: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        with open(self._path(key), "rb") as f:
            f.seek(offset)
            return f.read() if length is None else f.read(length)

    def get(self, key: str) -> Iterator[bytes]:
        with open(self._path(key), "rb") as f:
            yield from iter(lambda: f.read(STREAM_CHUNK_SIZE), b"")

    def _write_atomic(
        self,
        path: Path,
        writer: Callable,
        last_modified: Optional[float],
    ) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".s4-", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                writer(f)
            if last_modified is not None:
                os.utime(tmp_name, (last_modified, last_modified))
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def put(
        self, key: str, data: bytes, size: int, last_modified: Optional[float] = None
    ) -> None:
        if len(data) != size:
            raise S4TransferError(
                f"Size mismatch for {key}: expected {size}, got {len(data)}", key=key
            )
        self._write_atomic(self._path(key), lambda f: f.write(data), last_modified)

    def initiate_multipart(self, key: str, last_modified: Optional[float] = None) -> str:
        self._path(key)
        upload_id = uuid.uuid4().hex
        self._staging_dir(upload_id).mkdir(parents=True)
        return upload_id

    def upload_part(self, upload_id: str, key: str, index: int, data: bytes) -> str:
        staging = self._staging_dir(upload_id)
        if not staging.is_dir():
            raise S4NotFoundError(f"No such upload: {upload_id}", status_code=404)
        (staging / f"part-{index:05d}").write_bytes(data)
        return hashlib.md5(data).hexdigest()

    def complete_multipart(
        self,
        upload_id: str,
        key: str,
        parts: list[tuple[int, str]],
        last_modified: Optional[float] = None,
    ) -> None:
        staging = self._staging_dir(upload_id)
        part_paths = []
        for index, etag in sorted(parts):
            part_path = staging / f"part-{index:05d}"
            if not part_path.is_file() or _md5_file(part_path) != etag.strip('"'):
                raise S4TransferError(f"Part {index} of {key} is missing or corrupt", key=key)
            part_paths.append(part_path)

        def concatenate(f) -> None:
            for part_path in part_paths:
                with open(part_path, "rb") as part:
                    shutil.copyfileobj(part, f)

        self._write_atomic(self._path(key), concatenate, last_modified)
        shutil.rmtree(staging, ignore_errors=True)
        self._prune_staging_root()

    def abort_multipart(self, upload_id: str, key: str) -> None:
        shutil.rmtree(self._staging_dir(upload_id), ignore_errors=True)
        self._prune_staging_root()

    def _prune_staging_root(self) -> None:
        try:
            (self.root / STAGING_DIR_NAME).rmdir()
        except OSError:
            # Other uploads still in progress
            pass

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        # Remove directories left empty by the delete, up to the root
        parent = path.parent
        while parent != self.root and self.root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent


class RemoteStore(ObjectStore):
    """A bucket prefix on an S3-compatible endpoint.

    Uploads store the source modification time as object metadata. Objects
    whose ETag is not an MD5 digest (multipart uploads) are compared by size
    and mtime, so listing fetches that metadata for them with a HEAD request
    unless ``stored_mtimes`` is off.
    """

    def __init__(
        self,
        client: S3Client,
        scope: Scope,
        page_size: int = 1000,
        stored_mtimes: bool = True,
    ):
        self.client = client
        self.scope = scope
        self.page_size = page_size
        self.stored_mtimes = stored_mtimes

    @property
    def bucket(self) -> str:
        return self.scope.bucket

    def _key(self, key: str) -> str:
        return join_key(self.scope.prefix, key)

    def _entry(self, info: ObjectInfo, key: str) -> ObjectEntry:
        last_modified = info.mtime if info.mtime is not None else info.last_modified
        return ObjectEntry(
            key=key,
            size=info.size,
            last_modified=last_modified or 0.0,
            origin=Origin.REMOTE,
            content_hash=info.md5,
        )

    def list_page(self, token: Optional[str] = None) -> ListPage:
        prefix = f"{self.scope.prefix}/" if self.scope.prefix else ""
        page = self.client.list_objects(
            self.bucket,
            prefix=prefix,
            continuation_token=token,
            max_keys=self.page_size,
        )
        entries = []
        for info in page.entries:
            key = relative_key(info.key, self.scope.prefix)
            # Skip folder markers and the prefix object itself
            if not key or key.endswith("/"):
                continue
            if info.md5 is None and self.stored_mtimes:
                info = self.client.head_object(self.bucket, info.key)
            entries.append(self._entry(info, key))
        return ListPage(entries=entries, next_token=page.next_token)

    def stat(self, key: str) -> ObjectEntry:
        return self._entry(self.client.head_object(self.bucket, self._key(key)), key)

    def read(self, key: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        return self.client.get_object(self.bucket, self._key(key), offset, length)

    def get(self, key: str) -> Iterator[bytes]:
        return self.client.iter_object(self.bucket, self._key(key))

    def put(
        self, key: str, data: bytes, size: int, last_modified: Optional[float] = None
    ) -> None:
        if len(data) != size:
            raise S4TransferError(
                f"Size mismatch for {key}: expected {size}, got {len(data)}", key=key
            )
        self.client.put_object(
            self.bucket, self._key(key), data, last_modified=last_modified
        )

    def initiate_multipart(self, key: str, last_modified: Optional[float] = None) -> str:
        return self.client.create_multipart_upload(
            self.bucket, self._key(key), last_modified=last_modified
        )

    def upload_part(self, upload_id: str, key: str, index: int, data: bytes) -> str:
        return self.client.upload_part(self.bucket, self._key(key), upload_id, index, data)

    def complete_multipart(
        self,
        upload_id: str,
        key: str,
        parts: list[tuple[int, str]],
        last_modified: Optional[float] = None,
    ) -> None:
        self.client.complete_multipart_upload(self.bucket, self._key(key), upload_id, parts)

    def abort_multipart(self, upload_id: str, key: str) -> None:
        self.client.abort_multipart_upload(self.bucket, self._key(key), upload_id)

    def delete(self, key: str) -> None:
        self.client.delete_object(self.bucket, self._key(key))


def open_store(
    scope: Scope,
    client_factory: Optional[Callable[[str], S3Client]] = None,
    checksum_limit: int = DEFAULT_MULTIPART_THRESHOLD,
    missing_ok: bool = True,
) -> ObjectStore:
    """Create the store for a scope.

    Args:
        scope: Local or remote scope
        client_factory: Returns an S3Client for an alias name (remote scopes)
        checksum_limit: Largest local file that gets an MD5 hash
        missing_ok: List a missing local root as an empty tree

    Returns:
        LocalStore or RemoteStore
    """
    if scope.is_local:
        return LocalStore(scope.path, checksum_limit=checksum_limit, missing_ok=missing_ok)
    if client_factory is None or scope.alias is None:
        raise ValueError(f"No client available for remote scope {scope}")
    return RemoteStore(client_factory(scope.alias), scope)
