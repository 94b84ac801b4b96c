"""
API configuration settings.
Reads environment variables (and an optional .env file) with validation and defaults.
"""

from typing import List, Optional
from urllib.parse import quote_plus

from pydantic import Field, validator
from pydantic_settings import BaseSettings


FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/"
    "securetoken@system.gserviceaccount.com"
)


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "TravelEase Vehicle API"
    api_version: str = "1.0.0"
    api_description: str = """
    REST API for vehicle listings and car bookings.

    ## Authentication

    Protected endpoints require a Firebase ID token in the Authorization header:

    ```
    Authorization: Bearer <id token>
    ```
    """

    # Server Settings
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3000, env="PORT")
    debug: bool = Field(default=False, env="DEBUG")

    # Database Settings
    mongodb_url: str = Field(default="", env="MONGODB_URL")
    db_user: str = Field(default="", env="DB_USER")
    db_password: str = Field(default="", env="DB_PASSWORD")
    db_cluster_host: str = Field(default="cluster0.dveploj.mongodb.net", env="DB_CLUSTER_HOST")
    db_app_name: str = Field(default="Cluster0", env="DB_APP_NAME")
    mongodb_database: str = Field(default="myDB", env="MONGODB_DATABASE")
    vehicles_collection: str = Field(default="vehicleDB", env="VEHICLES_COLLECTION")
    bookings_collection: str = Field(default="carBookings", env="BOOKINGS_COLLECTION")
    mongodb_connect_timeout_ms: int = Field(default=5000, env="MONGODB_CONNECT_TIMEOUT_MS")

    # Identity provider
    firebase_project_id: str = Field(default="", env="FIREBASE_PROJECT_ID")
    firebase_jwks_url: str = Field(default=FIREBASE_JWKS_URL, env="FIREBASE_JWKS_URL")

    # CORS Settings
    cors_origins: str = Field(default="http://localhost:5173", env="CORS_ORIGINS")  # Comma-separated

    # Behaviour
    enforce_vehicle_ownership: bool = Field(default=False, env="ENFORCE_VEHICLE_OWNERSHIP")
    latest_vehicles_limit: int = Field(default=6, env="LATEST_VEHICLES_LIMIT")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @validator('mongodb_connect_timeout_ms')
    def validate_connect_timeout(cls, v):
        """Ensure the connection timeout is positive."""
        if v <= 0:
            raise ValueError('mongodb_connect_timeout_ms must be positive')
        return v

    @validator('latest_vehicles_limit')
    def validate_latest_limit(cls, v):
        if v < 1:
            raise ValueError('latest_vehicles_limit must be at least 1')
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields from .env

    def get_mongodb_url(self) -> str:
        """
        Get the MongoDB connection string.

        An explicit MONGODB_URL wins; otherwise an Atlas SRV URL is built
        from the DB_USER / DB_PASSWORD credentials.
        """
        if self.mongodb_url:
            return self.mongodb_url
        return (
            f"mongodb+srv://{quote_plus(self.db_user)}:{quote_plus(self.db_password)}"
            f"@{self.db_cluster_host}/?appName={self.db_app_name}"
        )

    def get_cors_origins(self) -> List[str]:
        """Parse the comma-separated CORS allow-list."""
        return [origin.strip().rstrip("/") for origin in self.cors_origins.split(",") if origin.strip()]


# Global config instance
config = APIConfig()
