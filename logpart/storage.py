"""Durable storage substrate: a local directory or an S3 prefix.

Both backends expose the same small surface the store and sink need:
create-if-absent, append, whole-object put, prefix listing and sequential
reads. Paths are '/'-separated keys relative to the backend's root.
"""
import logging
import os
import pathlib
import tempfile
from abc import ABC, abstractmethod
from typing import Iterator, List, Tuple
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024 * 1024


class Storage(ABC):
    @abstractmethod
    def create(self, path: str) -> bool:
        """Create an empty object at path. Returns False if it already existed."""

    @abstractmethod
    def append(self, path: str, data: bytes) -> None:
        pass

    @abstractmethod
    def put(self, path: str, data: bytes) -> None:
        """Replace whatever is stored at path."""

    @abstractmethod
    def list(self, prefix: str) -> List[str]:
        """Sorted keys under prefix."""

    @abstractmethod
    def read_sequential(self, path: str) -> Iterator[bytes]:
        pass


class LocalStorage(Storage):
    def __init__(self, root: pathlib.Path):
        self._root = pathlib.Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"cannot create storage root: {e}", path=str(self._root)) from e

    def __repr__(self):
        return f"LocalStorage({str(self._root)!r})"

    def _resolve(self, path: str) -> pathlib.Path:
        return self._root / path

    def create(self, path: str) -> bool:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb"):
                pass
        except FileExistsError:
            return False
        except OSError as e:
            raise StoreUnavailable(f"create failed: {e}", path=path) from e
        return True

    def append(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # one write call per batch keeps readers from seeing half a record
            with open(target, "ab") as file:
                file.write(data)
                file.flush()
                os.fsync(file.fileno())
        except OSError as e:
            raise StoreUnavailable(f"append failed: {e}", path=path) from e

    def put(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
            with os.fdopen(fd, "wb") as file:
                file.write(data)
            os.replace(tmp_name, target)
        except OSError as e:
            raise StoreUnavailable(f"put failed: {e}", path=path) from e

    def list(self, prefix: str) -> List[str]:
        base = self._resolve(prefix.rstrip("/")) if prefix.strip("/") else self._root
        if not base.exists():
            return []
        try:
            if base.is_file():
                return [prefix]
            return sorted(
                p.relative_to(self._root).as_posix()
                for p in base.rglob("*")
                if p.is_file() and not p.name.startswith(".")
            )
        except OSError as e:
            raise StoreUnavailable(f"list failed: {e}", path=prefix) from e

    def read_sequential(self, path: str) -> Iterator[bytes]:
        try:
            with open(self._resolve(path), "rb") as file:
                while True:
                    chunk = file.read(READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            raise StoreUnavailable(f"read failed: {e}", path=path) from e


def parse_s3_url(url: str) -> Tuple[str, str]:
    """Extracts bucket name and prefix from an s3:// URL."""
    parsed = urlparse(url)
    if parsed.scheme != "s3":
        raise ValueError("Input must be an s3:// URL")
    prefix = parsed.path.lstrip("/").rstrip("/")
    return parsed.netloc, prefix


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound")


class S3Storage(Storage):
    """
    S3 has no append: append is a read-modify-write of the whole object.
    That is acceptable under the single-writer-per-partition rule and with
    batched appends, but segments should be kept small on this backend.
    """

    def __init__(self, bucket: str, prefix: str = "", client=None):
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._s3 = client if client is not None else boto3.client("s3")

    def __repr__(self):
        return f"S3Storage(s3://{self._bucket}/{self._prefix})"

    def _key(self, path: str) -> str:
        return f"{self._prefix}/{path}" if self._prefix else path

    def _relative(self, key: str) -> str:
        return key[len(self._prefix) + 1:] if self._prefix else key

    def _get(self, path: str) -> bytes:
        response = self._s3.get_object(Bucket=self._bucket, Key=self._key(path))
        return response["Body"].read()

    def create(self, path: str) -> bool:
        try:
            self._s3.head_object(Bucket=self._bucket, Key=self._key(path))
            return False
        except ClientError as e:
            if not _is_missing(e):
                raise StoreUnavailable(f"create failed: {e}", path=path) from e
        except BotoCoreError as e:
            raise StoreUnavailable(f"create failed: {e}", path=path) from e
        self.put(path, b"")
        return True

    def append(self, path: str, data: bytes) -> None:
        try:
            try:
                existing = self._get(path)
            except ClientError as e:
                if not _is_missing(e):
                    raise
                existing = b""
            self._s3.put_object(Bucket=self._bucket, Key=self._key(path), Body=existing + data)
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"append failed: {e}", path=path) from e

    def put(self, path: str, data: bytes) -> None:
        try:
            self._s3.put_object(Bucket=self._bucket, Key=self._key(path), Body=data)
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"put failed: {e}", path=path) from e

    def list(self, prefix: str) -> List[str]:
        keys = []
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=self._key(prefix)):
                if "Contents" not in page:
                    continue
                for obj in page["Contents"]:
                    key = obj["Key"]
                    if key.endswith("/"):
                        continue
                    keys.append(self._relative(key))
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"list failed: {e}", path=prefix) from e
        return sorted(keys)

    def read_sequential(self, path: str) -> Iterator[bytes]:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=self._key(path))
            yield from response["Body"].iter_chunks(READ_CHUNK_SIZE)
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"read failed: {e}", path=path) from e


def open_storage(location: str) -> Storage:
    """A local directory path, or s3://bucket/prefix."""
    if location.startswith("s3://"):
        bucket, prefix = parse_s3_url(location)
        logger.info("using S3 storage at s3://%s/%s", bucket, prefix)
        return S3Storage(bucket, prefix)
    logger.info("using local storage at %s", location)
    return LocalStorage(pathlib.Path(location))


def open_destination(location: str) -> Tuple[Storage, str]:
    """Splits an output location into the storage holding it and the path inside."""
    if location.startswith("s3://"):
        bucket, key = parse_s3_url(location)
        if not key:
            raise ValueError(f"destination needs an object key: {location}")
        return S3Storage(bucket), key
    target = pathlib.Path(location)
    return LocalStorage(target.parent), target.name
