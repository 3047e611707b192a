"""
File storage collaborator.
"""

import logging
import shutil
from pathlib import Path
from typing import Protocol, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class StorageService(Protocol):
    def delete(self, path: PathLike) -> bool:
        ...

    def exists(self, path: PathLike) -> bool:
        ...


class FileSystemStorageService:
    """Local filesystem storage. Deletes are recursive and never raise."""

    def delete(self, path: PathLike) -> bool:
        target = Path(path)
        if not target.exists():
            return False

        try:
            if target.is_dir():
                shutil.rmtree(target)
            else:
                target.unlink()
            logger.debug(f"[Storage] Deleted {target}")
            return True
        except OSError as e:
            logger.warning(f"[Storage] Failed to delete {target}: {e}")
            return False

    def exists(self, path: PathLike) -> bool:
        return Path(path).exists()
