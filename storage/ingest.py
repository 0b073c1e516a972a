"""
Import pipelines that copy audio into the bucket.

Both pipelines stage files in a local temp directory, upload them through
``CloudflareR2Provider`` and remove the staging directory afterwards, even
when a transfer fails part-way.
"""

import logging
import posixpath
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from shared.constants import AUDIO_KEY_PREFIX, FTP_IMPORT_PREFIX, TEMP_STORAGE_THRESHOLD, is_audio_file
from shared.exceptions import TempStorageFullError
from ftp_bridge.client import RemoteTransferClient
from .cloudflare_r2 import CloudflareR2Provider

logger = logging.getLogger(__name__)


def create_temp_directory(base_dir: Union[str, Path], name: Optional[str] = None) -> Path:
    """Create (if needed) and return ``base_dir`` or a named child of it."""
    path = Path(base_dir) / name if name else Path(base_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def cleanup_temp_files(directory: Union[str, Path]) -> None:
    """Remove a staging directory. Failures are logged and ignored."""
    try:
        shutil.rmtree(directory)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug("Temp cleanup of %s failed: %s", directory, e)


def get_temp_directory_size(directory: Union[str, Path]) -> int:
    """Total size in bytes of every file below ``directory``; 0 if absent."""
    root = Path(directory)
    if not root.exists():
        return 0
    if root.is_file():
        return root.stat().st_size
    return sum(p.stat().st_size for p in root.rglob("*") if p.is_file())


def ensure_temp_capacity(directory: Union[str, Path], max_storage_mb: int) -> None:
    """
    Refuse new work when staging usage is above the threshold.

    Raises:
        TempStorageFullError: If usage exceeds 80% of ``max_storage_mb``
    """
    used = get_temp_directory_size(directory)
    limit = max_storage_mb * 1024 * 1024 * TEMP_STORAGE_THRESHOLD
    if used > limit:
        logger.warning("Temp storage at %d bytes, limit %d", used, int(limit))
        raise TempStorageFullError("Temp storage space low. Please try again later.")


class DownloadEngine(ABC):
    """
    Fetches selected manifest entries from the swarm into a local directory.

    The bridge ships no implementation; one is injected by the deployment.
    """

    @abstractmethod
    def fetch(self, magnet_uri: str, selected_paths: Sequence[str],
              destination: Path) -> List[Path]:
        """
        Download the entries whose display paths are listed into ``destination``.

        Returns:
            Local paths of the files actually produced
        """
        pass


def import_from_remote(client: RemoteTransferClient, provider: CloudflareR2Provider,
                       remote_paths: Iterable[str], temp_dir: Union[str, Path]) -> List[str]:
    """
    Copy audio files from a connected remote FTP server into the bucket.

    Non-audio paths are skipped. Each file lands under ``audio/ftp/<name>``.

    Returns:
        Keys written, in request order
    """
    staging = create_temp_directory(temp_dir, f"ftp-{uuid.uuid4().hex}")
    keys = []
    try:
        for remote_path in remote_paths:
            if not is_audio_file(remote_path):
                logger.warning("Skipping non-audio file: %s", remote_path)
                continue

            name = posixpath.basename(remote_path)
            local_path = client.download_to_path(remote_path, staging / name)
            keys.append(provider.upload_file(str(local_path), FTP_IMPORT_PREFIX + name))
    finally:
        cleanup_temp_files(staging)

    logger.info("Imported %d files from FTP", len(keys))
    return keys


def import_from_download_engine(engine: DownloadEngine, provider: CloudflareR2Provider,
                                info_hash: str, magnet_uri: str, selected_paths: Sequence[str],
                                temp_dir: Union[str, Path]) -> List[str]:
    """
    Fetch entries through the engine and upload them under
    ``audio/<info_hash>/<name>``.

    Args:
        info_hash: Hex content identifier, also the staging directory name
        magnet_uri: Link handed to the engine
        selected_paths: Display paths of the entries to fetch

    Returns:
        Keys written
    """
    staging = create_temp_directory(temp_dir, info_hash)
    keys = []
    try:
        for local_path in engine.fetch(magnet_uri, selected_paths, staging):
            key = f"{AUDIO_KEY_PREFIX}{info_hash}/{Path(local_path).name}"
            keys.append(provider.upload_file(str(local_path), key))
    finally:
        cleanup_temp_files(staging)

    logger.info("Imported %d files for %s", len(keys), info_hash)
    return keys
