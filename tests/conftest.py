import io
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody

from shared.config import BridgeConfig
from storage.directory_adapter import ObjectStoreDirectoryAdapter

BUCKET = "music"
MODIFIED = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def _not_found(operation):
    return ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, operation)


class _Paginator:
    def __init__(self, client):
        self.client = client

    def paginate(self, **kwargs):
        return [self.client.list_objects_v2(**kwargs)]


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the bridge makes."""

    def __init__(self, objects=None):
        self.objects = {}
        self.extra_args = {}
        self.calls = []
        for key, data in (objects or {}).items():
            self.objects[key] = data

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return _Paginator(self)

    def list_objects_v2(self, Bucket, Prefix="", Delimiter=None, **kwargs):
        self.calls.append(("list_objects_v2", Prefix, Delimiter))
        contents, prefixes = [], []
        for key in sorted(self.objects):
            if not key.startswith(Prefix):
                continue
            rest = key[len(Prefix):]
            if Delimiter and Delimiter in rest:
                common = Prefix + rest[:rest.index(Delimiter) + 1]
                if common not in prefixes:
                    prefixes.append(common)
                continue
            contents.append({"Key": key, "Size": len(self.objects[key]), "LastModified": MODIFIED})
        page = {"KeyCount": len(contents)}
        if contents:
            page["Contents"] = contents
        if prefixes:
            page["CommonPrefixes"] = [{"Prefix": p} for p in prefixes]
        return page

    def head_object(self, Bucket, Key):
        self.calls.append(("head_object", Key))
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key]), "LastModified": MODIFIED}

    def get_object(self, Bucket, Key, Range=None):
        self.calls.append(("get_object", Key, Range))
        if Key not in self.objects:
            raise _not_found("GetObject")
        data = self.objects[Key]
        if Range:
            start, _, end = Range[len("bytes="):].partition("-")
            data = data[int(start):int(end) + 1 if end else None]
        return {"Body": StreamingBody(io.BytesIO(data), len(data)), "ContentLength": len(data)}

    def upload_file(self, Filename, Bucket, Key, ExtraArgs=None):
        with open(Filename, "rb") as f:
            self.objects[Key] = f.read()
        self.extra_args[Key] = ExtraArgs or {}


@pytest.fixture
def s3_objects():
    return {
        "audio/album/01 - intro.flac": b"F" * 100,
        "audio/album/02 - song.mp3": bytes(range(256)) * 4,
        "audio/album/cover.jpg": b"JPEG",
        "audio/album/disc2/03 - outro.ogg": b"O" * 10,
        "audio/single.wav": b"RIFF" + b"\x00" * 60,
        "audio/ftp/": b"",
        "readme.txt": b"hello",
    }


@pytest.fixture
def s3_client(s3_objects):
    return FakeS3Client(s3_objects)


@pytest.fixture
def adapter(s3_client):
    return ObjectStoreDirectoryAdapter(s3_client, BUCKET)


@pytest.fixture
def bridge_config(tmp_path):
    return BridgeConfig(
        r2_account_id="acct",
        r2_access_key_id="key",
        r2_secret_access_key="secret",
        r2_bucket_name=BUCKET,
        ftp_server_username="admin",
        ftp_server_password="s3cret",
        admin_email="admin@example.com",
        temp_dir=tmp_path / "temp",
    )
