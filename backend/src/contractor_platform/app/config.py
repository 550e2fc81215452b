"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings

# Resolve .env from backend/ regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./contractor_platform.db"

    # Auth / JWT (tokens are issued by the platform's auth collaborator)
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Signing provider selection: "boldsign" or "docusign"
    esign_provider: str = "boldsign"

    # BoldSign
    boldsign_api_key: str = ""
    boldsign_api_base_url: str = "https://api.boldsign.com/v1"
    boldsign_webhook_secret: str = ""

    # DocuSign
    docusign_integration_key: str = ""
    docusign_user_id: str = ""
    docusign_account_id: str = ""
    docusign_api_base_url: str = "https://demo.docusign.net/restapi"
    docusign_rsa_private_key: str = ""
    docusign_connect_hmac_key: str = ""

    # Outbound signing-provider call policy
    esign_timeout_seconds: float = 30.0
    esign_max_retries: int = 3
    esign_backoff_seconds: float = 1.0

    # Document numbering
    numbering_max_retries: int = 5
    numbering_backoff_seconds: float = 0.05

    # CORS / Frontend
    cors_origins: str = "http://localhost:5173"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin.
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def docusign_oauth_host(self) -> str:
        """OAuth host for the JWT grant, derived from the REST base URL.

        Demo accounts authenticate against account-d.docusign.com, production
        accounts against account.docusign.com.
        """
        base = self.docusign_api_base_url
        if "demo.docusign.net" in base:
            return "account-d.docusign.com"
        if "docusign.net" in base:
            return "account.docusign.com"
        return urlparse(base).netloc or base.split("/")[0]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
