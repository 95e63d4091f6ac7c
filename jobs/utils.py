import logging
import os
from pathlib import Path
from uuid import uuid4
from django.conf import settings

logger = logging.getLogger(__name__)


def uploads_dir() -> Path:
    path = Path(settings.MEDIA_ROOT) / "uploads"
    path.mkdir(parents=True, exist_ok=True)
    return path


def outputs_dir() -> Path:
    path = Path(settings.MEDIA_ROOT) / "outputs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def new_output_path(extension: str) -> Path:
    """Fresh, collision-free path under MEDIA_ROOT/outputs for one artifact."""
    return outputs_dir() / f"{uuid4().hex}.{extension.lstrip('.')}"


def save_uploaded_file(djangofile) -> str:
    """Save to MEDIA_ROOT/uploads/<uuid>_<name> and return the absolute path."""
    safe_name = f"{uuid4().hex}_{os.path.basename(djangofile.name)}"
    dest = uploads_dir() / safe_name
    with open(dest, "wb") as f:
        for chunk in djangofile.chunks():
            f.write(chunk)
    return str(dest)


def remove_file(path) -> bool:
    """
    Delete a local file. A missing file counts as already removed; any other
    OS error is logged and reported as False so callers never fail on cleanup.
    """
    if not path:
        return False
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to clean up %s: %s", path, e)
        return False
    return True


def is_within(path, root) -> bool:
    try:
        Path(path).resolve().relative_to(Path(root).resolve())
    except ValueError:
        return False
    return True
