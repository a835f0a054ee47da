from .abstract_storage import AbstractStorage
from .filesystem_storage import FileSystemStorage
from .s3_storage import S3Storage
from .storage_factory import StorageFactory

__all__ = ['AbstractStorage', 'FileSystemStorage', 'S3Storage', 'StorageFactory']
