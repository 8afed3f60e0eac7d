"""Local storage for uploaded source files and images."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^\w.\-]+")


class LocalFileStore:
    """Files live under ``<root>/<team_id>/<uuid>_<name>``; the relative path is the file id.

    Parameters
    ----------
    root:
        Upload directory; created on first write.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _resolve(self, file_id: str) -> Path:
        path = (self.root / file_id).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"File id escapes the upload directory: {file_id!r}")
        return path

    def save(self, team_id: str, filename: str, data: bytes) -> str:
        safe_name = _UNSAFE.sub("_", Path(filename).name) or "file"
        file_id = f"{_UNSAFE.sub('_', team_id)}/{uuid4().hex}_{safe_name}"
        path = self._resolve(file_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return file_id

    def path(self, file_id: str) -> Path:
        path = self._resolve(file_id)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {file_id}")
        return path

    @staticmethod
    def original_name(file_id: str) -> str:
        """Filename as uploaded (without the uuid prefix)."""
        name = Path(file_id).name
        return name.split("_", 1)[1] if "_" in name else name

    def delete(self, file_ids: Iterable[str]) -> int:
        """Remove files; missing ones are ignored. Returns how many were removed."""
        removed = 0
        for file_id in file_ids:
            try:
                self._resolve(file_id).unlink()
                removed += 1
            except FileNotFoundError:
                logger.debug("File already gone: %s", file_id)
        return removed
