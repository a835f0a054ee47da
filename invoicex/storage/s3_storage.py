import os
import logging
from typing import Dict, Any, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from invoicex.exceptions import StorageNotFoundError
from .abstract_storage import AbstractStorage

logger = logging.getLogger(__name__)

S3_SCHEME = 's3://'


class S3Storage(AbstractStorage):
    """
    S3 implementation of the storage backend

    Locations have the form ``s3://<bucket>/<key>``. Credentials come from
    the configuration, then the standard AWS environment variables, then
    the default boto3 chain (IAM role, profile).
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize S3 storage

        Args:
            config: Configuration dictionary with:
                - bucket: S3 bucket name (required)
                - region: AWS region (default: us-east-1)
                - prefix: Optional key prefix
                - access_key / secret_key / session_token: Optional credentials
                - max_retries: Maximum retry attempts (default: 3)
        """
        self.config = config
        self.bucket = config.get('bucket')
        if not self.bucket:
            raise ValueError("S3 bucket name is required in configuration")

        self.region = config.get('region') or os.getenv('AWS_DEFAULT_REGION', 'us-east-1')
        self.prefix = config.get('prefix', '').strip('/')
        if self.prefix:
            self.prefix += '/'

        boto_config = Config(
            retries={
                'max_attempts': config.get('max_retries', 3),
                'mode': 'adaptive'
            },
            connect_timeout=config.get('connect_timeout', 60),
            read_timeout=config.get('read_timeout', 60)
        )

        client_kwargs: Dict[str, Any] = {
            'service_name': 's3',
            'region_name': self.region,
            'config': boto_config
        }
        access_key = config.get('access_key') or os.getenv('AWS_ACCESS_KEY_ID')
        secret_key = config.get('secret_key') or os.getenv('AWS_SECRET_ACCESS_KEY')
        if access_key and secret_key:
            client_kwargs['aws_access_key_id'] = access_key
            client_kwargs['aws_secret_access_key'] = secret_key
            session_token = config.get('session_token') or os.getenv('AWS_SESSION_TOKEN')
            if session_token:
                client_kwargs['aws_session_token'] = session_token

        self.s3 = boto3.client(**client_kwargs)
        logger.info(f"S3 storage initialized with bucket: {self.bucket}, region: {self.region}")

    def _parse_location(self, location: str) -> Tuple[str, str]:
        """Split a location into bucket and key"""
        if location.startswith(S3_SCHEME):
            bucket, _, key = location[len(S3_SCHEME):].partition('/')
            if not bucket or not key:
                raise ValueError(f"Invalid S3 location: {location}")
            return bucket, key
        return self.bucket, f"{self.prefix}{location.lstrip('/')}"

    def upload(self, data: bytes, key: str, metadata: Optional[Dict[str, str]] = None) -> str:
        full_key = f"{self.prefix}{key.lstrip('/')}"
        params: Dict[str, Any] = {'Bucket': self.bucket, 'Key': full_key, 'Body': data}
        if metadata:
            params['Metadata'] = {k: str(v) for k, v in metadata.items()}
        try:
            self.s3.put_object(**params)
        except ClientError as e:
            logger.error(f"Failed to upload to S3 key {full_key}: {e}")
            raise IOError(f"Failed to upload to S3 key {full_key}: {e}") from e
        logger.debug(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{full_key}")
        return f"{S3_SCHEME}{self.bucket}/{full_key}"

    def read(self, location: str) -> bytes:
        bucket, key = self._parse_location(location)
        try:
            response = self.s3.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code in ('NoSuchKey', '404'):
                raise StorageNotFoundError(location) from e
            raise IOError(f"Failed to read S3 object {location}: {e}") from e
        return response['Body'].read()

    def delete(self, location: str) -> bool:
        bucket, key = self._parse_location(location)
        try:
            self.s3.delete_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            logger.warning(f"Failed to delete S3 object {location}: {e}")
            return False

    def get_download_url(self, location: str, expires_in: int = 3600) -> str:
        bucket, key = self._parse_location(location)
        return self.s3.generate_presigned_url(
            'get_object',
            Params={'Bucket': bucket, 'Key': key},
            ExpiresIn=expires_in
        )

    def exists(self, location: str) -> bool:
        bucket, key = self._parse_location(location)
        try:
            self.s3.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code not in ('404', 'NoSuchKey'):
                logger.warning(f"Error checking existence of {location}: {e}")
            return False

    def get_metadata(self, location: str) -> Dict[str, Any]:
        bucket, key = self._parse_location(location)
        try:
            response = self.s3.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise StorageNotFoundError(location) from e
        return {
            'size': response.get('ContentLength'),
            'content_type': response.get('ContentType'),
            'modified_at': response['LastModified'].isoformat() if response.get('LastModified') else None,
            **response.get('Metadata', {}),
        }
