"""
HTTP-layer configuration for the MHC Control Panel API.

Uses pydantic-settings for environment variable loading. Domain settings
(database, API tokens, 2FA) live in mhc_panel.config.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """API server configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="API bind host")
    port: int = Field(default=8080, description="API bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Cookies
    cookie_secure: bool = Field(default=False, description="Set the Secure flag on auth cookies")
    cookie_domain: str | None = Field(default=None, description="Domain attribute for auth cookies")

    # Pagination defaults
    default_page_size: int = Field(default=50, description="Default items per page")
    max_page_size: int = Field(default=500, description="Maximum items per page")

    model_config = {"env_prefix": "PANEL_"}
