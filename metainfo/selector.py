"""Audio subset of a decoded manifest."""

from typing import List

from shared.constants import is_audio_file
from shared.models import FileEntry, Manifest


def select_audio_files(manifest: Manifest) -> List[FileEntry]:
    """Return the manifest's audio entries in declaration order."""
    return [entry for entry in manifest.files if is_audio_file(entry.path[-1])]
