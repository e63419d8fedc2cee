from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    school_name: str = Field("School Information Management System", alias="SCHOOL_NAME")
    currency_code: str = Field("MK", alias="CURRENCY_CODE")

    # Bulk student upload limits (CSV / XLSX)
    bulk_upload_max_bytes: int = Field(10 * 1024 * 1024, alias="BULK_UPLOAD_MAX_BYTES")
    bulk_upload_max_rows: int = Field(500, alias="BULK_UPLOAD_MAX_ROWS")

    # Days a clearance certificate stays valid after approval
    clearance_validity_days: int = Field(90, alias="CLEARANCE_VALIDITY_DAYS")

    default_admin_email: Optional[str] = Field(None, alias="DEFAULT_ADMIN_EMAIL")
    default_admin_password: Optional[str] = Field(None, alias="DEFAULT_ADMIN_PASSWORD")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
