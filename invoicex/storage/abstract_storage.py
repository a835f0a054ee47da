from abc import ABC, abstractmethod
from typing import Dict, Any, Optional


class AbstractStorage(ABC):
    """
    Abstract base class for storage backends

    Documents are addressed by an opaque location string returned from
    ``upload``; callers never build locations themselves.
    """

    @abstractmethod
    def upload(self, data: bytes, key: str, metadata: Optional[Dict[str, str]] = None) -> str:
        """
        Store bytes under a key

        Args:
            data: File content
            key: Storage key relative to the backend root
            metadata: Optional metadata stored alongside the object

        Returns:
            Location string to pass to the other methods
        """
        pass

    @abstractmethod
    def read(self, location: str) -> bytes:
        """
        Read the bytes stored at a location

        Raises:
            StorageNotFoundError: If nothing is stored there
        """
        pass

    @abstractmethod
    def delete(self, location: str) -> bool:
        """
        Delete the object at a location (best-effort)

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    def get_download_url(self, location: str, expires_in: int = 3600) -> str:
        """
        Get a URL the file can be downloaded from

        Args:
            location: Storage location
            expires_in: Validity in seconds where the backend supports it
        """
        pass

    @abstractmethod
    def exists(self, location: str) -> bool:
        """Check if content exists at a location"""
        pass

    def get_metadata(self, location: str) -> Dict[str, Any]:
        """Get backend metadata for a location"""
        return {}
