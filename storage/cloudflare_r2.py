"""
Cloudflare R2 storage provider.

R2 is S3-compatible, so everything goes through a boto3 S3 client pointed
at the account's R2 endpoint.
"""

import logging
import os
from typing import Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from shared.config import BridgeConfig
from shared.constants import CACHE_CONTROL, media_type_for
from shared.exceptions import StorageError
from .directory_adapter import ObjectStoreDirectoryAdapter

logger = logging.getLogger(__name__)

CLOUDFLARE_R2_ENDPOINT_TEMPLATE = "https://{account_id}.r2.cloudflarestorage.com"


def create_r2_client(config: BridgeConfig):
    """Create a boto3 S3 client for the configured R2 account."""
    config.require("r2_access_key_id", "r2_secret_access_key", "r2_bucket_name")
    endpoint = config.r2_endpoint
    if not endpoint:
        config.require("r2_account_id")
        endpoint = CLOUDFLARE_R2_ENDPOINT_TEMPLATE.format(account_id=config.r2_account_id)

    return boto3.client(
        's3',
        endpoint_url=endpoint,
        aws_access_key_id=config.r2_access_key_id,
        aws_secret_access_key=config.r2_secret_access_key,
        region_name='auto'  # R2 uses 'auto' region
    )


class CloudflareR2Provider:
    """
    Bucket access for the import pipelines and the HTTP surface.

    Uploads are the only writes the bridge ever performs, and they happen
    here rather than through the read-only directory adapter.
    """

    def __init__(self, s3_client, bucket_name: str, cdn_domain: Optional[str] = None):
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.cdn_domain = cdn_domain

    @classmethod
    def from_config(cls, config: BridgeConfig, s3_client=None) -> 'CloudflareR2Provider':
        if s3_client is None:
            s3_client = create_r2_client(config)
        return cls(s3_client, config.r2_bucket_name, config.r2_cdn_domain)

    def directory_adapter(self) -> ObjectStoreDirectoryAdapter:
        return ObjectStoreDirectoryAdapter(self.s3_client, self.bucket_name)

    def upload_file(self, local_path: str, remote_key: str) -> str:
        """
        Upload a local file with an audio content type.

        Args:
            local_path: Path to local file
            remote_key: Key (path) for file in bucket

        Returns:
            The key the file was stored under

        Raises:
            StorageError: If the upload fails
        """
        extra_args = {
            'ContentType': media_type_for(str(local_path)),
            'CacheControl': CACHE_CONTROL,
        }
        try:
            self.s3_client.upload_file(
                str(local_path), self.bucket_name, remote_key,
                ExtraArgs=extra_args
            )
        except (ClientError, BotoCoreError, OSError) as e:
            raise StorageError(f"Upload of {os.path.basename(str(local_path))} failed: {e}")

        logger.info("Uploaded %s -> %s", local_path, remote_key)
        return remote_key

    def get_file_url(self, remote_key: str) -> str:
        """CDN URL when a CDN domain is configured, else the streaming endpoint."""
        if self.cdn_domain:
            return f"{self.cdn_domain}/{remote_key}"
        return f"/api/stream?key={quote(remote_key, safe='')}"
