from typing import List, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # OnCalls API, e.g. https://v3.oncalls.com/api
    oncalls_base_url: Optional[str] = None

    # Single-user stdio mode credentials
    oncalls_username: Optional[str] = None
    oncalls_password: Optional[SecretStr] = None

    # OAuth 2.0 client registered with the OnCalls issuer
    oauth_client_id: str = "oncalls-mcp"
    oauth_client_secret: Optional[SecretStr] = None
    oauth_authorize_url: Optional[str] = None
    oauth_token_url: Optional[str] = None
    oauth_userinfo_url: Optional[str] = None
    oauth_issuer_url: Optional[str] = None
    oauth_redirect_uri: Optional[str] = None
    oauth_scopes: str = "openid profile email"

    # Externally visible URL of this server (used in OAuth metadata)
    mcp_server_url: Optional[str] = None

    host: str = "0.0.0.0"
    port: int = 3001
    http_timeout_seconds: float = 30.0
    log_level: str = "INFO"

    # Constants
    OAUTH_STATE_TTL: int = 600  # seconds
    OAUTH_STATE_SWEEP_INTERVAL: int = 60  # seconds
    SSE_KEEPALIVE_INTERVAL: float = 15.0  # seconds

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    @property
    def api_base_url(self) -> Optional[str]:
        if not self.oncalls_base_url:
            return None
        return self.oncalls_base_url.rstrip("/")

    @property
    def scopes(self) -> List[str]:
        return self.oauth_scopes.split()

    @property
    def issuer_url(self) -> Optional[str]:
        """
        Issuer advertised in OAuth metadata. Falls back to the origin of the
        OnCalls API when not configured explicitly.
        """
        if self.oauth_issuer_url:
            return self.oauth_issuer_url.rstrip("/")
        base = self.api_base_url
        if base is None:
            return None
        return base[: -len("/api")] if base.endswith("/api") else base

    @property
    def authorize_url(self) -> Optional[str]:
        if self.oauth_authorize_url:
            return self.oauth_authorize_url
        issuer = self.issuer_url
        return f"{issuer}/oauth/authorize" if issuer else None

    @property
    def token_url(self) -> Optional[str]:
        if self.oauth_token_url:
            return self.oauth_token_url
        issuer = self.issuer_url
        return f"{issuer}/oauth/token" if issuer else None

    @property
    def userinfo_url(self) -> Optional[str]:
        if self.oauth_userinfo_url:
            return self.oauth_userinfo_url
        issuer = self.issuer_url
        return f"{issuer}/oauth/userinfo" if issuer else None


settings = Settings()
