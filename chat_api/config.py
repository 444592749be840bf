"""
Configuration and loading secrets from GCP Secret Manager with fallback to environment variables.
"""

import logging
import os
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings
from google.cloud import secretmanager

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with optional GCP Secret Manager integration and environment variable fallback."""

    # GCP Configuration (Secret Manager is only consulted when a project is set)
    gcp_project_id: Optional[str] = None
    database_url_secret_name: str = "database-url"
    gemini_api_key_secret_name: str = "gemini-api-key"
    jwt_secret_secret_name: str = "jwt-secret"

    # Loaded secrets (populated from the environment, then Secret Manager)
    database_url: Optional[str] = None
    gemini_api_key: Optional[str] = None
    jwt_secret: Optional[str] = None

    # Session tokens
    jwt_algorithm: str = "HS256"
    token_expire_days: int = 7
    bcrypt_rounds: int = 10

    # Data layer timeouts (seconds)
    db_connect_timeout: float = 10.0
    db_server_selection_timeout: float = 5.0
    db_socket_timeout: float = 45.0
    db_ping_timeout: float = 2.0
    db_query_timeout: float = 5.0
    db_create_tables: bool = True

    # Gemini
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_fallback_models: List[str] = ["gemini-pro", "gemini-1.5-pro", "gemini-1.5-flash"]
    gemini_list_models_timeout: float = 5.0
    gemini_request_timeout: float = 60.0
    gemini_max_retries: int = 3
    gemini_retry_base_delay: float = 1.0
    gemini_model_cache_seconds: float = 300.0

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.gcp_project_id:
            self._load_secrets()

    def _load_secrets(self):
        """Fill missing secrets from Google Cloud Secret Manager."""
        try:
            client = secretmanager.SecretManagerServiceClient()
        except Exception as e:
            logger.warning(f"Could not create Secret Manager client, using environment only: {e}")
            return

        project_path = f"projects/{self.gcp_project_id}"
        logger.info("Loading application secrets from Google Secret Manager...")

        if not self.database_url:
            self.database_url = self._get_secret_with_fallback(
                client, project_path, self.database_url_secret_name, "DATABASE_URL"
            )
        if not self.gemini_api_key:
            self.gemini_api_key = self._get_secret_with_fallback(
                client, project_path, self.gemini_api_key_secret_name, "GEMINI_API_KEY"
            )
        if not self.jwt_secret:
            self.jwt_secret = self._get_secret_with_fallback(
                client, project_path, self.jwt_secret_secret_name, "JWT_SECRET"
            )

    def _get_secret_with_fallback(self, client, project_path: str, secret_name: str, env_var_name: str) -> str:
        """Get a secret value from Google Cloud Secret Manager with environment variable fallback."""
        try:
            secret_path = f"{project_path}/secrets/{secret_name}/versions/latest"
            response = client.access_secret_version(request={"name": secret_path})
            return response.payload.data.decode("UTF-8").strip()
        except Exception as e:
            logger.warning(f"Could not fetch secret '{secret_name}' from GCP Secret Manager: {e}")
            env_value = os.getenv(env_var_name)
            if env_value:
                logger.info(f"Using environment variable {env_var_name} instead.")
                return env_value.strip()
            logger.warning(f"Neither GCP secret '{secret_name}' nor environment variable '{env_var_name}' found.")
            return ""

    def validate_secrets(self):
        """Validate required secrets. A missing database URL or signing secret is fatal."""
        if not self.database_url:
            raise RuntimeError("Please define the DATABASE_URL environment variable (or .env entry)")
        if not self.jwt_secret:
            raise RuntimeError("Please define the JWT_SECRET environment variable (or .env entry)")
        if not self.gemini_api_key:
            logger.warning("GEMINI_API_KEY is not set; chat requests will fail until it is configured")
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.validate_secrets()
    return settings
