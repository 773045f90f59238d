"""
Raw upload storage for S3 and the local filesystem.
"""
from typing import Optional
from functools import lru_cache
from pathlib import Path
import asyncio
import boto3
from botocore.exceptions import BotoCoreError, ClientError
import aiofiles

from app.core.config import settings
from app.core.exceptions import ConfigurationError, StorageError
from app.core.logging import get_logger

logger = get_logger(__name__)


class FileStorage:
    """Stores uploaded source files so imports can be re-read later."""

    def __init__(self, provider: Optional[str] = None, local_storage_path: Optional[str] = None):
        self.provider = (provider or settings.STORAGE_PROVIDER).lower()

        if self.provider == "s3":
            self._init_s3()
        elif self.provider == "local":
            self._init_local(local_storage_path or settings.LOCAL_STORAGE_PATH)
        else:
            raise ConfigurationError(f"Unsupported storage provider: {self.provider}")

    def _init_s3(self):
        """Initialize AWS S3 client."""
        if not settings.AWS_ACCESS_KEY_ID or not settings.AWS_SECRET_ACCESS_KEY:
            raise ConfigurationError("AWS credentials are required for the s3 storage provider")
        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region_name=settings.AWS_REGION,
        )
        self.bucket_name = settings.S3_BUCKET_NAME

    def _init_local(self, path: str):
        """Initialize local filesystem storage."""
        self.local_storage_path = Path(path)
        self.local_storage_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Local storage initialized at: {self.local_storage_path}")

    async def upload_file(
        self,
        file_content: bytes,
        file_path: str,
        content_type: Optional[str] = None
    ) -> str:
        """
        Store a file.

        Args:
            file_content: File content as bytes
            file_path: Relative key for the file
            content_type: MIME type of the file

        Returns:
            Storage path recorded on the import
        """
        if self.provider == "s3":
            return await self._upload_to_s3(file_content, file_path, content_type)
        return await self._upload_to_local(file_content, file_path)

    async def _upload_to_s3(
        self,
        file_content: bytes,
        file_path: str,
        content_type: Optional[str] = None
    ) -> str:
        extra_args = {}
        if content_type:
            extra_args['ContentType'] = content_type

        try:
            # boto3 is synchronous
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=file_path,
                Body=file_content,
                **extra_args
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading to S3: {e}")
            raise StorageError(f"Failed to store file in S3: {e}", details={"key": file_path}) from e

        url = f"s3://{self.bucket_name}/{file_path}"
        logger.info(f"File uploaded to S3: {url}")
        return url

    async def _upload_to_local(self, file_content: bytes, file_path: str) -> str:
        full_path = self.local_storage_path / file_path
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(full_path, 'wb') as f:
                await f.write(file_content)
        except OSError as e:
            logger.error(f"Error saving to local storage: {e}")
            raise StorageError(f"Failed to store file locally: {e}", details={"path": str(full_path)}) from e

        logger.info(f"File saved to local storage: {full_path}")
        return str(full_path)

    async def download_file(self, file_path: str) -> bytes:
        """Read back a stored file by the path ``upload_file`` returned."""
        if self.provider == "s3":
            return await self._download_from_s3(file_path)
        return await self._download_from_local(file_path)

    async def _download_from_s3(self, file_path: str) -> bytes:
        key = file_path
        if file_path.startswith("s3://"):
            parts = file_path[len("s3://"):].split("/", 1)
            if len(parts) != 2:
                raise StorageError(f"Invalid S3 URL format: {file_path}")
            key = parts[1]

        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object,
                Bucket=self.bucket_name,
                Key=key
            )
            return await asyncio.to_thread(response['Body'].read)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error downloading from S3 (bucket={self.bucket_name}, key={key}): {e}")
            raise StorageError(f"Failed to read file from S3: {e}", details={"key": key}) from e

    async def _download_from_local(self, file_path: str) -> bytes:
        full_path = Path(file_path)
        if not full_path.is_absolute():
            full_path = self.local_storage_path / file_path

        try:
            async with aiofiles.open(full_path, 'rb') as f:
                return await f.read()
        except OSError as e:
            logger.error(f"Error loading from local storage: {e}")
            raise StorageError(f"Failed to read file: {e}", details={"path": str(full_path)}) from e


@lru_cache()
def get_file_storage() -> FileStorage:
    """Process-wide storage instance, created on first use."""
    return FileStorage()
