"""
Read-only directory view over an S3-compatible bucket.

Directories do not exist in the bucket; they are synthesized on every call
from the ``CommonPrefixes`` of a prefix+delimiter listing.
"""

import logging
import posixpath
from typing import BinaryIO, Iterator, List, Optional

from botocore.exceptions import ClientError, BotoCoreError

from shared.constants import KEY_DELIMITER, is_audio_file
from shared.exceptions import NotFoundError, StorageError, UnsupportedOperationError
from shared.models import VirtualDirectory, VirtualDirectoryEntry, VirtualFile
from .filesystem import VirtualFilesystem

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def normalize_path(path: str) -> str:
    """Collapse a virtual path to absolute POSIX form without a trailing slash."""
    return posixpath.normpath("/" + (path or "").lstrip("/"))


def path_to_key(path: str) -> str:
    return normalize_path(path).lstrip("/")


def path_to_prefix(path: str) -> str:
    key = path_to_key(path)
    return key + KEY_DELIMITER if key else ""


class ObjectStoreDirectoryAdapter(VirtualFilesystem):
    """
    Translates a bucket's flat key space into directory entries and streams.

    Only audio objects are visible in listings. Any object, audio or not,
    can still be opened by its exact key.
    """

    def __init__(self, s3_client, bucket_name: str):
        self.s3_client = s3_client
        self.bucket_name = bucket_name

    def _store_error(self, action: str, path: str, error: Exception) -> Exception:
        if isinstance(error, ClientError):
            code = str(error.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return NotFoundError(f"No such file: {normalize_path(path)}")
        logger.error("Object store %s failed for %s: %s", action, path, error)
        return StorageError(f"Object store {action} failed for {normalize_path(path)}: {error}")

    def list(self, path: str) -> List[VirtualDirectoryEntry]:
        prefix = path_to_prefix(path)
        entries: List[VirtualDirectoryEntry] = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            pages = paginator.paginate(
                Bucket=self.bucket_name, Prefix=prefix, Delimiter=KEY_DELIMITER
            )
            for page in pages:
                for common in page.get("CommonPrefixes", []):
                    sub_prefix = common.get("Prefix")
                    if not sub_prefix:
                        continue
                    name = sub_prefix.rstrip(KEY_DELIMITER).rsplit(KEY_DELIMITER, 1)[-1]
                    entries.append(VirtualDirectory(
                        name=name, path="/" + sub_prefix.rstrip(KEY_DELIMITER)
                    ))

                for obj in page.get("Contents", []):
                    key = obj.get("Key")
                    # Skip the directory marker object some tools create
                    if not key or key == prefix:
                        continue
                    name = key[len(prefix):]
                    if not is_audio_file(name):
                        continue
                    entries.append(VirtualFile(
                        name=name,
                        size=obj.get("Size", 0),
                        modified=obj.get("LastModified"),
                        path="/" + key,
                    ))
        except (ClientError, BotoCoreError) as e:
            raise self._store_error("listing", path, e)

        logger.debug("Listed %s: %d entries", normalize_path(path), len(entries))
        return entries

    def iter_audio_objects(self, prefix: str = "") -> Iterator[VirtualFile]:
        """Every audio object under ``prefix``, at any depth."""
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get("Contents", []):
                    key = obj.get("Key")
                    if key and is_audio_file(key):
                        yield VirtualFile(
                            name=key.rsplit(KEY_DELIMITER, 1)[-1],
                            size=obj.get("Size", 0),
                            modified=obj.get("LastModified"),
                            path="/" + key,
                        )
        except (ClientError, BotoCoreError) as e:
            raise self._store_error("listing", prefix, e)

    def get(self, path: str, start: Optional[int] = None,
            end: Optional[int] = None) -> BinaryIO:
        key = path_to_key(path)
        if not key:
            raise NotFoundError("No such file: /")

        kwargs = {"Bucket": self.bucket_name, "Key": key}
        if start is not None:
            kwargs["Range"] = f"bytes={start}-{'' if end is None else end}"
        try:
            response = self.s3_client.get_object(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._store_error("read", path, e)

        body = response.get("Body")
        if body is None:
            raise NotFoundError(f"No such file: {normalize_path(path)}")
        return body

    def stat(self, path: str) -> VirtualFile:
        key = path_to_key(path)
        if not key:
            raise NotFoundError("No such file: /")
        try:
            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._store_error("lookup", path, e)

        return VirtualFile(
            name=key.rsplit(KEY_DELIMITER, 1)[-1],
            size=response.get("ContentLength", 0),
            modified=response.get("LastModified"),
            path="/" + key,
        )

    # The bucket is the single source of truth; nothing here may change it.

    def write(self, path: str, data: BinaryIO) -> None:
        raise UnsupportedOperationError(f"Cannot write {normalize_path(path)}: store is read-only")

    def delete(self, path: str) -> None:
        raise UnsupportedOperationError(f"Cannot delete {normalize_path(path)}: store is read-only")

    def mkdir(self, path: str) -> None:
        raise UnsupportedOperationError(f"Cannot create {normalize_path(path)}: store is read-only")

    def rename(self, source: str, destination: str) -> None:
        raise UnsupportedOperationError(f"Cannot rename {normalize_path(source)}: store is read-only")
