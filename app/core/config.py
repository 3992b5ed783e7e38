from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: Optional[str] = None

    # Database (PostgreSQL - local or deployed)
    DATABASE_URL: Optional[str] = None

    # JWT Settings (tokens are issued by the identity service)
    JWT_SECRET_KEY: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"

    # TOKEN_PROCESSOR_KEY
    CRYPTOGRAPHY_SECRET: Optional[str] = None

    # CORS
    ALLOWED_ORIGINS: List[str] = []

    # Log Level
    LOG_LEVEL: (
        str  # Required: Must be set in environment (e.g., INFO, DEBUG, WARNING, ERROR)
    )

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Tracegate-API"
    VERSION: str = "1.0.0"

    # Datasource connectivity checks
    DATASOURCE_TEST_TIMEOUT_SECONDS: float = (
        5.0  # Applies to HTTP checks and the ClickHouse client alike
    )
    DATASOURCE_TEST_LOOKBACK_HOURS: int = (
        24  # Search window used when probing a Custom API
    )

    # ClickHouse datasource defaults
    CLICKHOUSE_DEFAULT_PORT: int = 8123
    CLICKHOUSE_DEFAULT_USERNAME: str = "default"
    CLICKHOUSE_DEFAULT_PROTOCOL: str = "http"

    # Datasource responses
    DATASOURCE_MASK_SECRETS_IN_RESPONSES: bool = (
        False  # False returns decrypted config on read, True returns "***"
    )

    # Logging Configuration
    LOGGING_FRAME_DEPTH: int = (
        6  # Frame depth for finding logging call origin in stack trace
    )

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    # --------- Properties ---------
    @property
    def is_local(self) -> bool:
        """
        Check if running in local development environment.

        Returns True only for local development (local or local_dev).
        Any other environment (dev, staging, prod) returns False.
        """
        if not self.ENVIRONMENT:
            return False
        env = self.ENVIRONMENT.lower()
        return env in ["local", "local_dev"]


settings = Settings()
