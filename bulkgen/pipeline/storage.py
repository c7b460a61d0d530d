"""
S3/R2 blob storage for pipeline artifacts.

Artifacts are stored under:
  bulk/{prefix}/{uuid}.{ext}

Public URLs are returned after upload. External services (vision, animation
providers) get presigned URLs for objects in our bucket; anything not in
storage is passed through unchanged.
"""

import os
import asyncio
import logging
import mimetypes
from typing import Optional
from urllib.parse import urlparse, unquote
from uuid import uuid4

import boto3
import httpx
from botocore.config import Config as BotoConfig

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")
# Any S3-compatible endpoint (Wasabi, AWS) overrides the R2 account endpoint
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "")

PRESIGN_EXPIRES = int(os.getenv("PRESIGN_EXPIRES", "3600"))

STORAGE_HOST_MARKERS = ("r2.cloudflarestorage.com", "wasabisys.com", "amazonaws.com", "s3.")


class BlobStorage:
    """upload / presign / download against one S3-compatible bucket."""

    def __init__(
        self,
        bucket: str = R2_BUCKET_NAME,
        public_url: str = R2_PUBLIC_URL,
        endpoint_url: str = "",
        access_key_id: str = R2_ACCESS_KEY_ID,
        secret_access_key: str = R2_SECRET_ACCESS_KEY,
    ):
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self.endpoint_url = endpoint_url or S3_ENDPOINT_URL or (
            f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com" if R2_ACCOUNT_ID else ""
        )
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._client = None

    def _s3(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url or None,
                aws_access_key_id=self.access_key_id or None,
                aws_secret_access_key=self.secret_access_key or None,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        return self._client

    def _object_url(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"

    async def upload(self, data: bytes, content_type: str, prefix: str = "artifacts") -> str:
        """Upload bytes and return the object's URL."""
        ext = mimetypes.guess_extension(content_type.split(";")[0]) or ".bin"
        key = f"bulk/{prefix}/{uuid4().hex}{ext}"
        try:
            await asyncio.to_thread(
                self._s3().put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            logger.error(f"Storage upload failed for key={key}: {e}")
            raise
        url = self._object_url(key)
        logger.info(f"Uploaded to storage: {url}")
        return url

    def is_storage_url(self, url: str) -> bool:
        if not url:
            return False
        if self.public_url and url.startswith(self.public_url + "/"):
            return True
        host = urlparse(url).netloc.lower()
        return any(marker in host for marker in STORAGE_HOST_MARKERS)

    def key_for_url(self, url: str) -> Optional[str]:
        if self.public_url and url.startswith(self.public_url + "/"):
            return unquote(url[len(self.public_url) + 1:].split("?")[0])
        parsed = urlparse(url)
        path = unquote(parsed.path.lstrip("/"))
        # Path-style URLs carry the bucket as the first segment
        if path.startswith(self.bucket + "/"):
            path = path[len(self.bucket) + 1:]
        return path or None

    async def get_temporary_access_url(self, url: str) -> str:
        """
        Presigned GET URL for objects in our bucket.

        Non-storage URLs are returned unchanged. Signing failures propagate;
        callers fall back to the original URL.
        """
        if not self.is_storage_url(url):
            return url
        key = self.key_for_url(url)
        if not key:
            return url
        return await asyncio.to_thread(
            self._s3().generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=PRESIGN_EXPIRES,
        )

    async def download(self, url: str) -> tuple[bytes, str]:
        """Download from a public URL and return (bytes, content type)."""
        async with httpx.AsyncClient(timeout=120, follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()
        content_type = resp.headers.get("content-type", "").split(";")[0]
        if not content_type or content_type == "application/octet-stream":
            content_type = mimetypes.guess_type(urlparse(url).path)[0] or "application/octet-stream"
        return resp.content, content_type


async def resolve_access_url(storage: BlobStorage, url: str) -> str:
    """Temporary access URL, degrading to the original URL on any error."""
    try:
        return await storage.get_temporary_access_url(url)
    except Exception as e:
        logger.warning(f"Presign failed for {url[:80]}: {e}; using original URL")
        return url


async def persist_remote_artifact(storage: BlobStorage, source_url: str, prefix: str) -> str:
    """
    Copy a provider-hosted artifact into our bucket.

    Storage errors degrade to the provider URL so a generated artifact is
    never lost to an upload hiccup.
    """
    try:
        data, content_type = await storage.download(source_url)
        return await storage.upload(data, content_type, prefix)
    except Exception as e:
        logger.warning(f"Re-upload of {source_url[:80]} failed: {e}; keeping provider URL")
        return source_url
