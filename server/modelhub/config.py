"""ModelHub Server - Configuration"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Local / test database (SQLAlchemy URL)
    database_url: str = "sqlite:///modelhub.db"

    # Azure SQL Database. When the server is set it takes precedence over
    # database_url and authenticates via Azure Entra ID (CLI or Managed Identity).
    azure_sql_server: str = ""
    azure_sql_database: str = "modelhub"

    # Separator for qualified ids: 'org:project:element'
    id_delimiter: str = ":"

    # Header carrying the username set by the authenticating proxy
    user_header: str = "X-Authenticated-User"

    # Username created as superuser on first start (empty disables)
    default_admin: str = "admin"

    # CORS origins (comma-separated URLs)
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    log_level: str = "INFO"

    def get_cors_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if not self.cors_origins:
            return ["http://localhost:3000"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def uses_azure_sql(self) -> bool:
        return bool(self.azure_sql_server)

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
