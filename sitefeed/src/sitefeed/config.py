"""
Configuration management using Pydantic Settings.

All configuration is loaded from environment variables (prefixed with
``SITEFEED_``) with sensible defaults.
"""

from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SITEFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # HTTP fetching
    user_agent: str = Field(DESKTOP_USER_AGENT, description="User agent for static fetches and rendering")
    request_timeout: float = Field(30.0, description="Timeout for static HTTP fetches (seconds)")
    fetch_attempts: int = Field(1, description="Attempts per static fetch (1 = no retry)")

    # Headless rendering
    render_timeout_ms: int = Field(30000, description="Navigation timeout for rendered pages")
    render_extra_wait_ms: int = Field(2000, description="Extra wait after load for deferred scripts")
    wait_for_selector_timeout_ms: int = Field(10000, description="Max wait for an optional selector")
    browser_headless: bool = Field(True, description="Launch the local browser headless")
    chrome_service_url: Optional[str] = Field(None, description="Remote browser service (browserless) URL")
    browserless_token: Optional[str] = Field(None, description="Token for the remote browser service")
    viewport_width: int = Field(1920, description="Render viewport width")
    viewport_height: int = Field(1080, description="Render viewport height")

    # Script mode
    script_timeout_ms: int = Field(30000, description="Wall-clock budget for one script run")
    script_fetch_timeout: float = Field(30.0, description="Default timeout for script fetch calls (seconds)")

    # Feed shaping
    snippet_length: int = Field(300, description="Max characters of the plain-text content snippet")
    default_limit: int = Field(20, description="Default item limit for aggregated feeds")
    max_concurrent_sources: int = Field(5, description="Max sources fetched at once by the aggregator")

    # Logging
    log_level: str = Field("INFO", description="Log level")
    log_json: bool = Field(False, description="Output logs as JSON")

    @field_validator("fetch_attempts", "max_concurrent_sources")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        """Counts that must allow at least one operation."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("snippet_length")
    @classmethod
    def snippet_range(cls, v: int) -> int:
        if not 20 <= v <= 2000:
            raise ValueError(f"snippet_length {v} not in range 20-2000")
        return v

    @property
    def browser_ws_endpoint(self) -> Optional[str]:
        """WebSocket endpoint of the remote browser service, if configured."""
        if not self.chrome_service_url:
            return None

        host = self.chrome_service_url
        for prefix in ("http://", "https://", "ws://", "wss://"):
            if host.startswith(prefix):
                host = host[len(prefix):]
                break

        endpoint = f"ws://{host.rstrip('/')}/"
        if self.browserless_token:
            endpoint += f"?token={self.browserless_token}"
        return endpoint


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Clear cache to allow re-reading settings (useful for tests)
def clear_settings_cache():
    """Clear the settings cache."""
    get_settings.cache_clear()
