"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List, Optional
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Workout Planner API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "workoutplanner"
    POSTGRES_USER: str = "workoutplanner"
    POSTGRES_PASSWORD: str = "workoutplanner"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Token signing (asymmetric only)
    JWT_ALGORITHM: str = "RS256"
    JWT_PRIVATE_KEY: str = ""
    JWT_PUBLIC_KEY: str = ""
    JWT_PRIVATE_KEY_FILE: str = ""
    JWT_PUBLIC_KEY_FILE: str = ""
    JWT_ISSUER: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = None
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    TOKEN_LEEWAY_SECONDS: int = 0

    # External identity provider
    IDP_PROVIDER: str = "auth0"
    IDP_PUBLIC_KEY: str = ""
    IDP_PUBLIC_KEY_FILE: str = ""
    IDP_ALGORITHMS: Annotated[List[str], NoDecode] = ["RS256"]
    IDP_AUDIENCE: Optional[str] = None
    IDP_ISSUER: Optional[str] = None
    ROLE_CLAIM_NAMESPACE: str = "https://api.workout-planner.com"

    # Revocation store / refresh-token index
    REDIS_URL: str = ""
    REDIS_SOCKET_TIMEOUT: float = 0.5
    REDIS_MAX_RETRIES: int = 1
    # Fail-open keeps the API available when Redis is down but lets revoked
    # tokens through until it recovers. Set to false for high-assurance deployments.
    REVOCATION_FAIL_OPEN: bool = True
    REVOCATION_SWEEP_INTERVAL_SECONDS: int = 3600
    REVOCATION_MAX_AGE_SECONDS: int = 86400

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_PER_HOUR: int = 1000
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", "IDP_ALGORITHMS", mode="before")
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated values from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            IDP_ALGORITHMS=RS256,ES256
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]

        return [item.strip() for item in raw.split(",") if item.strip()]

    @property
    def role_claim(self) -> str:
        return f"{self.ROLE_CLAIM_NAMESPACE.rstrip('/')}/role"

    @property
    def legacy_roles_claim(self) -> str:
        return f"{self.ROLE_CLAIM_NAMESPACE.rstrip('/')}/roles"

    @staticmethod
    def _read_key(inline: str, path: str) -> str:
        if inline:
            # Env files commonly carry PEM blocks with escaped newlines.
            return inline.replace("\\n", "\n")
        if path:
            return Path(path).read_text()
        return ""

    def get_private_key(self) -> str:
        return self._read_key(self.JWT_PRIVATE_KEY, self.JWT_PRIVATE_KEY_FILE)

    def get_public_key(self) -> str:
        return self._read_key(self.JWT_PUBLIC_KEY, self.JWT_PUBLIC_KEY_FILE)

    def get_idp_public_key(self) -> str:
        return self._read_key(self.IDP_PUBLIC_KEY, self.IDP_PUBLIC_KEY_FILE)

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate token signing configuration.

        Raises:
            ValueError: If a shared-secret algorithm is configured, or if
                production is missing its key pair.
        """
        if not self.JWT_ALGORITHM.upper().startswith(("RS", "ES", "PS")):
            raise ValueError(
                f"JWT_ALGORITHM={self.JWT_ALGORITHM} is not asymmetric. Use RS256."
            )

        if self.ENVIRONMENT.lower() != "production":
            return

        if not self.get_private_key() or not self.get_public_key():
            raise ValueError(
                "JWT key pair missing for production. Set JWT_PRIVATE_KEY/JWT_PUBLIC_KEY "
                "or the *_FILE variants."
            )
        if not self.get_idp_public_key():
            raise ValueError("IDP_PUBLIC_KEY is required in production.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
