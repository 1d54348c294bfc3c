"""Upload skill zips and registry files to Cloudflare R2 (S3 compatible)."""

import asyncio
import logging
from pathlib import Path

import boto3

logger = logging.getLogger(__name__)


def build_r2_key(prefix: str, owner: str, repo: str, skill_name: str) -> str:
    return f"{prefix}{owner}-{repo}-{skill_name}.zip"


def content_type_for(key: str) -> str:
    return "application/json; charset=utf-8" if key.endswith(".json") else "application/zip"


class R2Uploader:
    """Thin wrapper around a boto3 S3 client pointed at an R2 endpoint."""

    def __init__(self, bucket: str, prefix: str = "zips/", client=None):
        self.bucket = bucket
        self.prefix = prefix
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "R2Uploader | None":
        """An uploader when R2 credentials are configured, otherwise None."""
        if not settings.r2_configured:
            return None
        client = boto3.client(
            "s3",
            endpoint_url=settings.r2_endpoint,
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            region_name="auto",
        )
        return cls(settings.r2_bucket, settings.r2_prefix, client)

    def skill_key(self, owner: str, repo: str, skill_name: str) -> str:
        return build_r2_key(self.prefix, owner, repo, skill_name)

    def _put(self, local_path: Path, key: str) -> None:
        with open(local_path, "rb") as f:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=f.read(), ContentType=content_type_for(key))

    async def upload(self, local_path: Path, key: str) -> None:
        """Upload one file. boto3 is blocking, so it runs in a worker thread."""
        await asyncio.to_thread(self._put, Path(local_path), key)
        logger.debug("Uploaded %s to r2://%s/%s", local_path, self.bucket, key)
