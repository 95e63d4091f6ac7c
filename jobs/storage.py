"""
Result delivery: keep artifacts on local disk (stateless mode) or push them to
object storage and hand back URLs (s3 mode).
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from django.conf import settings

from . import s3
from .utils import remove_file

logger = logging.getLogger(__name__)

STATELESS = "stateless"
S3 = "s3"

CONTENT_TYPES = {
    "mp4": "video/mp4",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def get_content_type(path) -> str:
    ext = Path(str(path)).suffix.lower().lstrip(".")
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class StoredArtifact:
    mode: str
    local_path: Optional[str] = None
    url: Optional[str] = None


class StorageResolver:
    def __init__(self, mode: Optional[str] = None):
        self.mode = mode or settings.STORAGE_MODE

    @property
    def uploads(self) -> bool:
        return self.mode == S3

    def resolve(self, path) -> StoredArtifact:
        """
        Stateless: the path stays where it is and is returned unchanged.
        S3: upload under a fresh key, delete the local copy, return the URL.
        A failed upload leaves the local file in place and raises StorageUploadError.
        """
        if not self.uploads:
            return StoredArtifact(mode=STATELESS, local_path=str(path))

        key = s3.new_object_key(path)
        s3.upload_file(path, key, content_type=get_content_type(path))
        remove_file(path)
        return StoredArtifact(mode=S3, url=s3.object_url(key))

    def resolve_many(self, paths, heartbeat=None) -> list[StoredArtifact]:
        """
        Resolve artifacts in order. If one upload fails, every local file not
        yet uploaded (the failing one included) is removed before re-raising;
        files already uploaded were removed as part of their own upload.
        `heartbeat` is called after each completed upload.
        """
        paths = [str(p) for p in paths]
        stored = []
        for idx, path in enumerate(paths):
            try:
                stored.append(self.resolve(path))
            except Exception:
                for leftover in paths[idx:]:
                    remove_file(leftover)
                raise
            if heartbeat is not None and self.uploads:
                heartbeat()
        return stored
