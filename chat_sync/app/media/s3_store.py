import asyncio
import io
import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from .policy import object_key
from ..config import Settings, settings as default_settings
from ..messages.schemas import MediaRef, MessageType
from ..time_utils import now_ms

logger = logging.getLogger(__name__)


class S3BlobStore:
    """Stores message attachments in an S3 bucket"""

    def __init__(self, settings: Settings = default_settings, client=None, **kwargs):
        self.settings = settings
        self.bucket = settings.aws_s3_bucket_name
        self.base_url = settings.aws_s3_base_url.rstrip('/')
        self.s3 = client or boto3.client(
            's3',
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
            **kwargs
        )
        logger.info(f"S3 blob store initialized with bucket: {self.bucket}")

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_for(self, url: str) -> Optional[str]:
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]

    async def put(self, data: bytes, filename: str, content_type: Optional[str], chat_id: str,
                  message_type: MessageType) -> MediaRef:
        """
        Upload an attachment.

        Returns:
            MediaRef: Public URL, original name and size of the stored object
        """
        key = object_key(chat_id, message_type, filename, now_ms())
        extra_args = {}
        if content_type:
            extra_args['ContentType'] = content_type

        logger.debug(f"Uploading file to S3 bucket: {self.bucket}, object: {key}")
        try:
            await asyncio.to_thread(self.s3.upload_fileobj, io.BytesIO(data), self.bucket, key,
                                    ExtraArgs=extra_args)
        except ClientError as e:
            logger.error(f"Error uploading file to S3: {e}")
            raise
        logger.info(f"File uploaded to S3: {key}")
        return MediaRef(url=self.url_for(key), name=filename, size=len(data))

    async def delete(self, url: str) -> bool:
        """
        Remove the object behind ``url``.

        Returns:
            bool: False if the URL doesn't point into this bucket
        """
        key = self.key_for(url)
        if key is None:
            logger.warning(f"Not deleting {url}: outside bucket {self.bucket}")
            return False
        try:
            await asyncio.to_thread(self.s3.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            logger.error(f"Error deleting {key} from S3: {e}")
            raise
        logger.info(f"File deleted from S3: {key}")
        return True
