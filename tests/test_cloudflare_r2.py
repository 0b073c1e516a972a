from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from shared.exceptions import ConfigurationError, StorageError
from storage.cloudflare_r2 import CloudflareR2Provider, create_r2_client


def test_upload_sets_audio_headers(s3_client, tmp_path):
    local = tmp_path / "track.m4a"
    local.write_bytes(b"m4a")
    provider = CloudflareR2Provider(s3_client, "music")

    assert provider.upload_file(str(local), "audio/x/track.m4a") == "audio/x/track.m4a"
    assert s3_client.objects["audio/x/track.m4a"] == b"m4a"
    assert s3_client.extra_args["audio/x/track.m4a"]["ContentType"] == "audio/mp4"


def test_upload_failure_is_a_storage_error(tmp_path):
    client = MagicMock()
    client.upload_file.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "PutObject")
    provider = CloudflareR2Provider(client, "music")

    with pytest.raises(StorageError, match="a.mp3"):
        provider.upload_file(str(tmp_path / "a.mp3"), "audio/a.mp3")


def test_file_url_without_cdn(s3_client):
    provider = CloudflareR2Provider(s3_client, "music")
    assert provider.get_file_url("audio/album/02 - song.mp3") == \
        "/api/stream?key=audio%2Falbum%2F02%20-%20song.mp3"


def test_file_url_with_cdn(s3_client):
    provider = CloudflareR2Provider(s3_client, "music", cdn_domain="https://cdn.example.com")
    assert provider.get_file_url("audio/a.mp3") == "https://cdn.example.com/audio/a.mp3"


def test_client_uses_account_endpoint(bridge_config):
    bridge_config.r2_endpoint = None
    bridge_config.r2_account_id = "acct"
    with patch("storage.cloudflare_r2.boto3.client") as factory:
        create_r2_client(bridge_config)

    kwargs = factory.call_args.kwargs
    assert kwargs["endpoint_url"] == "https://acct.r2.cloudflarestorage.com"
    assert kwargs["region_name"] == "auto"


def test_client_requires_credentials(bridge_config):
    bridge_config.r2_secret_access_key = None
    with pytest.raises(ConfigurationError, match="R2_SECRET_ACCESS_KEY"):
        create_r2_client(bridge_config)
