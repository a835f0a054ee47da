from typing import Dict, Any

from .abstract_storage import AbstractStorage
from .filesystem_storage import FileSystemStorage
from .s3_storage import S3Storage


class StorageFactory:
    """
    Factory for creating storage backends

    Creates the backend named by ``type`` in the storage configuration, or
    picks one from the shape of a stored location.
    """

    _storage_classes = {
        'filesystem': FileSystemStorage,
        's3': S3Storage,
    }

    @classmethod
    def register_storage(cls, name: str, storage_class: type) -> None:
        """
        Register a new storage backend

        Args:
            name: Name of the storage backend
            storage_class: Class implementing the storage backend
        """
        if not issubclass(storage_class, AbstractStorage):
            raise ValueError("Storage class must inherit from AbstractStorage")
        cls._storage_classes[name.lower()] = storage_class

    @classmethod
    def create_storage(cls, config: Dict[str, Any]) -> AbstractStorage:
        """
        Create a storage backend based on configuration

        Args:
            config: The ``storage`` configuration section. ``type`` selects
                the backend; an ``s3`` sub-block configures S3.

        Raises:
            ValueError: If storage type is unknown
        """
        storage_type = config.get('type', 'filesystem')
        if storage_type not in cls._storage_classes:
            raise ValueError(f"Unknown storage type: {storage_type}")
        backend_config = config
        if storage_type != 'filesystem' and isinstance(config.get(storage_type), dict):
            backend_config = config[storage_type]
        return cls._storage_classes[storage_type](backend_config)
