"""Object storage for binary artifacts (audio input, generated images/videos).

Two backends:
- LocalObjectStorage: files under a directory (development, tests)
- R2ObjectStorage: Cloudflare R2 via its S3-compatible API (boto3)

`get_storage()` picks one from STORAGE_BACKEND.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from recipe_engine.errors import ProviderError

logger = logging.getLogger(__name__)

STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "local")
LOCAL_STORAGE_DIR = os.environ.get("LOCAL_STORAGE_DIR", "./storage")
LOCAL_STORAGE_URL = os.environ.get("LOCAL_STORAGE_URL", "")
R2_BUCKET_NAME = os.environ.get("R2_BUCKET_NAME", "")


class LocalObjectStorage:
    """Stores objects as files below a root directory."""

    def __init__(self, root: Optional[Path] = None, public_base_url: str = LOCAL_STORAGE_URL):
        self.root = Path(root or LOCAL_STORAGE_DIR)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"[local] Stored {key} ({len(data):,} bytes, {content_type})")

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise ProviderError(f"Object not found: {key}", provider="storage")
        return path.read_bytes()

    def signed_url(self, key: str, ttl_seconds: int = 600) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._path(key).as_uri()


class R2ObjectStorage:
    """Cloudflare R2 storage using the S3-compatible API."""

    def __init__(self, bucket_name: str = R2_BUCKET_NAME, client=None):
        if not bucket_name:
            raise RuntimeError("R2_BUCKET_NAME not set. Set the environment variable to use R2.")
        self.bucket_name = bucket_name
        self._client = client or self._create_client()

    @staticmethod
    def _create_client():
        """Create a boto3 S3 client configured for Cloudflare R2."""
        import boto3
        from botocore.client import Config

        account_id = os.environ.get("R2_ACCOUNT_ID")
        access_key_id = os.environ.get("R2_ACCESS_KEY_ID")
        secret_access_key = os.environ.get("R2_SECRET_ACCESS_KEY")
        if not all([account_id, access_key_id, secret_access_key]):
            raise RuntimeError(
                "Missing R2 credentials (R2_ACCOUNT_ID, R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY)."
            )

        # R2 endpoint format: https://<account_id>.r2.cloudflarestorage.com
        client = boto3.client(
            "s3",
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            region_name="auto",
        )
        logger.info(f"R2 client initialized for account {account_id}")
        return client

    def put(self, key: str, data: bytes, content_type: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                ContentLength=len(data),
            )
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(f"R2 upload failed for {key}: {e}", provider="r2") from e
        logger.info(f"[R2] Uploaded {key} to bucket {self.bucket_name}")

    def get(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            obj = self._client.get_object(Bucket=self.bucket_name, Key=key)
            return obj["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(f"R2 download failed for {key}: {e}", provider="r2") from e

    def signed_url(self, key: str, ttl_seconds: int = 600) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket_name, "Key": key},
            ExpiresIn=ttl_seconds,
        )


def get_storage():
    """Build the configured object storage backend."""
    if STORAGE_BACKEND == "r2":
        return R2ObjectStorage()
    return LocalObjectStorage()
