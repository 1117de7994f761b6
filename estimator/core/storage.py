from __future__ import annotations

import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

from estimator.core.settings import uploads_root


def ensure_uploads_root() -> Path:
    """Ensure the upload staging folder exists and return it."""

    root = uploads_root()
    root.mkdir(parents=True, exist_ok=True)
    return root


def save_upload(filename: str, source: BinaryIO) -> Path:
    """Stage an uploaded model file on disk before it is validated and submitted."""

    safe_name = Path(filename).name
    target_dir = ensure_uploads_root() / uuid.uuid4().hex
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / safe_name
    with target.open("wb") as buffer:
        shutil.copyfileobj(source, buffer)
    return target


def discard_upload(path: Path) -> None:
    """Remove a staged upload and its folder once the service has it (or rejected it)."""

    if path.exists():
        path.unlink()
    parent = path.parent
    if parent != uploads_root() and parent.exists() and not any(parent.iterdir()):
        parent.rmdir()
