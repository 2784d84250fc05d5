"""S3 storage for profile images"""

import asyncio
import logging
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from copilot.config import settings
from copilot.errors import UpstreamFailure, ValidationFailure

logger = logging.getLogger(__name__)


def _get_s3_client():
    return boto3.client(
        "s3",
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
    )


class ProfileImageStorage:
    def __init__(self, client=None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or settings.s3_bucket_name

    @property
    def client(self):
        if self._client is None:
            self._client = _get_s3_client()
        return self._client

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{settings.aws_region}.amazonaws.com/{key}"

    async def upload_profile_image(
        self,
        user_id: str,
        file_name: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """Store an image under the user's prefix and return its public URL."""
        if not content:
            raise ValidationFailure("Image is empty")
        if len(content) > settings.max_profile_image_size:
            raise ValidationFailure("Image is too large")
        if content_type and not content_type.startswith("image/"):
            raise ValidationFailure("File is not an image")

        key = f"profile/{user_id}/{uuid.uuid4().hex}-{file_name}"
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise UpstreamFailure("Failed to upload image") from e

        logger.info(f"Uploaded profile image {key}")
        return self.public_url(key)
