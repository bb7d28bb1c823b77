"""Service and trigger configuration via Pydantic settings."""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel


class Settings(BaseModel):
    environment: str = "development"
    aws_region: Optional[str] = None
    log_level: str = "INFO"

    # Object storage and the HTTP upload surface
    bucket_name: Optional[str] = None
    upload_prefix: str = "uploads/"
    upload_dir: Path = Path("uploads")
    port: int = 3001
    public_base_url: Optional[str] = None
    max_upload_bytes: int = 50 * 1024 * 1024
    signed_url_expiry: int = 3600

    # Sinks
    queue_url: Optional[str] = None
    aurora_cluster_arn: Optional[str] = None
    aurora_secret_arn: Optional[str] = None
    aurora_database: Optional[str] = None
    metadata_table: str = "dicom_metadata"

    # Managed imaging service
    datastore_id: Optional[str] = None
    import_role_arn: Optional[str] = None
    import_output_uri: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def base_url(self) -> str:
        return self.public_base_url or f"http://localhost:{self.port}"

    def object_key(self, filename: str) -> str:
        """Key an uploaded file is stored under in the active object store."""
        if self.is_production:
            return f"{self.upload_prefix}{filename}"
        return filename

    def output_uri(self) -> str:
        if self.import_output_uri:
            return self.import_output_uri
        self.require("bucket_name")
        return f"s3://{self.bucket_name}/healthimaging-output/"

    def missing(self, *names: str) -> List[str]:
        return [name for name in names if not getattr(self, name)]

    def require(self, *names: str) -> None:
        missing = self.missing(*names)
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@lru_cache
def get_settings() -> Settings:
    upload_dir_env = os.getenv("UPLOAD_DIR")
    return Settings(
        environment=os.getenv("APP_ENV", os.getenv("NODE_ENV", "development")).lower(),
        aws_region=os.getenv("AWS_REGION"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        bucket_name=os.getenv("S3_BUCKET_NAME", os.getenv("BUCKET_NAME")),
        upload_prefix=os.getenv("UPLOAD_PREFIX", Settings().upload_prefix),
        upload_dir=Path(upload_dir_env) if upload_dir_env else Settings().upload_dir,
        port=_env_int("PORT", Settings().port),
        public_base_url=os.getenv("PUBLIC_BASE_URL"),
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", Settings().max_upload_bytes),
        signed_url_expiry=_env_int("SIGNED_URL_EXPIRY", Settings().signed_url_expiry),
        queue_url=os.getenv("QUEUE_URL"),
        aurora_cluster_arn=os.getenv("AURORA_CLUSTER_ARN"),
        aurora_secret_arn=os.getenv("AURORA_SECRET_ARN"),
        aurora_database=os.getenv("AURORA_DATABASE"),
        metadata_table=os.getenv("METADATA_TABLE", Settings().metadata_table),
        datastore_id=os.getenv("HEALTHIMAGING_DATASTORE_ID"),
        import_role_arn=os.getenv("HEALTHIMAGING_ROLE_ARN"),
        import_output_uri=os.getenv("HEALTHIMAGING_OUTPUT_URI"),
    )
