from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    node_env: str = Field("development", description="development or production")
    host: str = Field("127.0.0.1")
    port: int = Field(5000)
    api_title: str = Field("CodeStakes API")
    log_level: str = Field("INFO")

    database_url: str = Field("sqlite:///codestakes.db")
    redis_url: str = Field("redis://localhost:6379/0")

    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    server_url: str = Field("http://localhost:5000")
    github_callback_url: Optional[str] = None
    client_url: str = Field("http://localhost:5173")
    cors_extra_origins: str = Field("https://github.com")

    session_secret: str = Field("secret")
    session_cookie_name: str = Field("sid")
    session_ttl_hours: int = Field(24)
    session_purge_frequency: int = Field(60 * 60)
    cookie_domain: Optional[str] = None
    jwt_algorithm: str = Field("HS256")
    access_token_expire_minutes: int = Field(60 * 24)

    auth_rate_limit: str = Field("5/minute")
    rate_limit_enabled: bool = Field(True)
    debug_endpoint_enabled: Optional[bool] = None

    @property
    def is_production(self) -> bool:
        return self.node_env.lower() in ("production", "prod")

    @property
    def cors_origins(self) -> List[str]:
        extra = [o.strip() for o in self.cors_extra_origins.split(",") if o.strip()]
        return [self.client_url] + [o for o in extra if o != self.client_url]

    @property
    def oauth_callback_url(self) -> str:
        if self.github_callback_url:
            return self.github_callback_url
        return f"{self.server_url.rstrip('/')}/api/auth/github/callback"

    @property
    def debug_enabled(self) -> bool:
        if self.debug_endpoint_enabled is None:
            return not self.is_production
        return self.debug_endpoint_enabled


settings = Settings()
