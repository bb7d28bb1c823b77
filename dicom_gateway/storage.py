"""
Object store adapters.

Uploads land on local disk during development and in S3 in production; both
adapters expose the same ``get_bytes`` / ``put_bytes`` / ``url_for`` calls so
the API and the trigger adapters do not care which one they hold.
"""

import logging
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from dicom_gateway.errors import NotFoundError, SinkUnavailableError

logger = logging.getLogger(__name__)

DICOM_CONTENT_TYPE = "application/dicom"

_MISSING_CODES = {"NoSuchKey", "NoSuchBucket", "404", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """Raw object access on top of an injected boto3 S3 client."""

    storage_mode = "S3"

    def __init__(self, client, bucket: Optional[str] = None):
        self.client = client
        self.bucket = bucket

    def _bucket(self, bucket: Optional[str]) -> str:
        name = bucket or self.bucket
        if not name:
            raise ValueError("No bucket configured for the object store")
        return name

    def get_bytes(self, key: str, bucket: Optional[str] = None) -> bytes:
        bucket = self._bucket(bucket)
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise NotFoundError(key, bucket) from exc
            raise SinkUnavailableError("object store", str(exc)) from exc
        except BotoCoreError as exc:
            raise SinkUnavailableError("object store", str(exc)) from exc

    def put_bytes(
        self,
        key: str,
        data: bytes,
        content_type: str = DICOM_CONTENT_TYPE,
        bucket: Optional[str] = None,
    ) -> None:
        bucket = self._bucket(bucket)
        try:
            self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata={"Content-Type": content_type},
            )
        except (ClientError, BotoCoreError) as exc:
            raise SinkUnavailableError("object store", str(exc)) from exc
        logger.info("Uploaded s3://%s/%s (%d bytes)", bucket, key, len(data))

    def url_for(self, key: str, expires_in: int = 3600, bucket: Optional[str] = None) -> str:
        """Time-limited presigned GET URL for *key*."""
        bucket = self._bucket(bucket)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as exc:
            raise SinkUnavailableError("object store", str(exc)) from exc

    def verify_access(self) -> None:
        """Check the bucket is reachable and allow browser access to its objects."""
        bucket = self._bucket(None)
        try:
            self.client.head_bucket(Bucket=bucket)
            logger.info("Successfully connected to S3 bucket %s", bucket)
            self.client.put_bucket_cors(
                Bucket=bucket,
                CORSConfiguration={
                    "CORSRules": [
                        {
                            "AllowedHeaders": ["*"],
                            "AllowedMethods": ["GET", "PUT", "POST", "DELETE", "HEAD"],
                            "AllowedOrigins": ["*"],
                            "ExposeHeaders": [
                                "ETag",
                                "x-amz-meta-custom-header",
                                "x-amz-server-side-encryption",
                            ],
                            "MaxAgeSeconds": 3600,
                        }
                    ]
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise SinkUnavailableError("object store", str(exc)) from exc
        logger.info("Configured CORS on S3 bucket %s", bucket)


class LocalObjectStore:
    """Development stand-in that keeps uploads in a local directory."""

    storage_mode = "Local"

    def __init__(self, root: Path, base_url: str = "http://localhost:3001"):
        self.root = Path(root)
        self.root.mkdir(exist_ok=True, parents=True)
        self.base_url = base_url.rstrip("/")

    def path_for(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key).resolve()
        if path.parent != root:
            raise NotFoundError(key)
        return path

    def get_bytes(self, key: str, bucket: Optional[str] = None) -> bytes:
        path = self.path_for(key)
        if not path.is_file():
            raise NotFoundError(key)
        return path.read_bytes()

    def put_bytes(
        self,
        key: str,
        data: bytes,
        content_type: str = DICOM_CONTENT_TYPE,
        bucket: Optional[str] = None,
    ) -> None:
        path = self.path_for(key)
        with open(path, "wb") as f:
            f.write(data)
        logger.info("Stored %s locally (%d bytes)", path, len(data))

    def url_for(self, key: str, expires_in: int = 3600, bucket: Optional[str] = None) -> str:
        return f"{self.base_url}/uploads/{key}"

    def verify_access(self) -> None:
        logger.info("File uploads will be stored in: %s", self.root.resolve())
