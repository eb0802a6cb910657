"""
Configuration for the Visa Portal case service
==============================================

Environment variables:
- STORAGE_BUCKET: bucket holding uploaded case documents (default: visa-portal-documents)
- STORAGE_ENDPOINT_URL: S3-compatible endpoint (empty for AWS S3, e.g. http://minio:9000 for MinIO)
- STORAGE_REGION: bucket region (default: us-east-1)
- STORAGE_ACCESS_KEY / STORAGE_SECRET_KEY: explicit credentials (optional, falls back to the AWS chain)
- STORAGE_FOLDER: key prefix for case documents (default: glojourn/documents)
- SIGNED_URL_TTL: lifetime of document access URLs in seconds (default: 900)
- MAX_FILE_SIZE_BYTES: upload size limit (default: 5 MiB)
- ALLOWED_FILE_TYPES: comma-separated MIME types accepted for upload
- DATABASE_URL is read by visa_portal.db.session
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


DEFAULT_ALLOWED_FILE_TYPES = "image/jpeg,image/png,image/gif,application/pdf"


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Document storage
    storage_bucket: str = "visa-portal-documents"
    storage_endpoint_url: Optional[str] = None
    storage_region: str = "us-east-1"
    storage_access_key: Optional[str] = None
    storage_secret_key: Optional[str] = None
    storage_folder: str = "glojourn/documents"
    signed_url_ttl: int = 900

    # Upload limits
    max_file_size_bytes: int = 5 * 1024 * 1024
    allowed_file_types: str = DEFAULT_ALLOWED_FILE_TYPES

    # Listing
    default_page_limit: int = 10
    max_page_limit: int = 100

    # Service info
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def allowed_file_type_list(self) -> List[str]:
        return [t.strip() for t in self.allowed_file_types.split(",") if t.strip()]

    def validate_storage_config(self) -> List[str]:
        """Validate storage configuration, return list of warnings"""
        warnings = []

        if bool(self.storage_access_key) != bool(self.storage_secret_key):
            warnings.append("STORAGE_ACCESS_KEY and STORAGE_SECRET_KEY must be set together")

        if self.storage_endpoint_url and not self.storage_access_key:
            warnings.append("STORAGE_ENDPOINT_URL set but no STORAGE_ACCESS_KEY (MinIO requires explicit credentials)")

        if self.signed_url_ttl <= 0:
            warnings.append("SIGNED_URL_TTL must be positive")

        if not self.allowed_file_type_list:
            warnings.append("ALLOWED_FILE_TYPES is empty: every upload will be rejected")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
