import os
import json
import logging
from typing import Dict, Any, Optional
from pathlib import Path
from datetime import datetime

from invoicex.exceptions import StorageNotFoundError
from .abstract_storage import AbstractStorage

logger = logging.getLogger(__name__)


class FileSystemStorage(AbstractStorage):
    """
    File system implementation of the storage backend

    Locations are keys relative to the configured base path. Metadata is
    kept in a ``<file>.meta.json`` sidecar.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize filesystem storage

        Args:
            config: Storage configuration dictionary with at least:
                   - path: Base path for storage
        """
        self.config = config
        self.base_path = Path(config.get('path', 'storage'))
        self.ensure_storage_exists()

    def ensure_storage_exists(self) -> None:
        """Ensure storage directory exists"""
        self.base_path.mkdir(parents=True, exist_ok=True)

    def get_path(self, key: str) -> Path:
        """
        Get full path for a storage key with path traversal protection

        Raises:
            ValueError: If path traversal is detected or key is invalid
        """
        if not key:
            raise ValueError("Storage key cannot be empty")

        if '..' in key or os.path.isabs(key):
            raise ValueError(f"Invalid storage key: {key} - path traversal detected")

        normalized_key = os.path.normpath(key)
        full_path = (self.base_path / normalized_key).resolve()

        try:
            full_path.relative_to(self.base_path.resolve())
        except ValueError:
            raise ValueError(f"Invalid storage key: {key} - path outside storage directory")

        return full_path

    def upload(self, data: bytes, key: str, metadata: Optional[Dict[str, str]] = None) -> str:
        path = self.get_path(key)
        if path.exists() and path.is_symlink():
            raise ValueError(f"Invalid storage key: {key} - symlinks not allowed")
        path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write
        temp_path = path.with_suffix(path.suffix + '.tmp')
        try:
            with temp_path.open('wb') as f:
                f.write(data)
            temp_path.replace(path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

        if metadata:
            self._meta_path(path).write_text(json.dumps(metadata))

        logger.debug(f"Stored {len(data)} bytes at {key}")
        return key

    def read(self, location: str) -> bytes:
        path = self.get_path(location)
        if not path.is_file():
            raise StorageNotFoundError(location)
        return path.read_bytes()

    def delete(self, location: str) -> bool:
        path = self.get_path(location)
        meta_path = self._meta_path(path)
        if meta_path.exists():
            meta_path.unlink()
        if path.exists():
            path.unlink()
            return True
        return False

    def get_download_url(self, location: str, expires_in: int = 3600) -> str:
        return self.get_path(location).as_uri()

    def exists(self, location: str) -> bool:
        return self.get_path(location).is_file()

    def get_metadata(self, location: str) -> Dict[str, Any]:
        path = self.get_path(location)
        if not path.is_file():
            raise StorageNotFoundError(location)
        stat = path.stat()
        metadata: Dict[str, Any] = {
            'size': stat.st_size,
            'modified_at': datetime.fromtimestamp(stat.st_mtime).isoformat(),
        }
        meta_path = self._meta_path(path)
        if meta_path.exists():
            metadata.update(json.loads(meta_path.read_text()))
        return metadata

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + '.meta.json')
