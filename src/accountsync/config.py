"""Settings for accountsync, loaded from ``ACCOUNTSYNC_*`` environment variables.

Created: 2026-10-19
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config_dir() -> Path:
    """Get/create the accountsync config directory (~/.accountsync)."""
    d = Path.home() / ".accountsync"
    d.mkdir(parents=True, exist_ok=True)
    return d


class Settings(BaseSettings):
    """Runtime configuration.

    Components receive a Settings instance explicitly (usually through
    ``SyncContext``); nothing reads the environment on its own.
    """

    model_config = SettingsConfigDict(env_prefix="ACCOUNTSYNC_", extra="ignore")

    # Quota auto-refresh
    quota_refresh_interval: float = Field(default=300.0, gt=0)  # seconds
    auto_refresh_enabled: bool = True
    quota_alert_threshold: float = Field(default=0.9, ge=0, le=1)

    # Backend RPC / push transport
    rpc_base_url: str = "http://127.0.0.1:34115"
    rpc_timeout: float = 30.0
    event_reconnect_delay: float = 3.0

    # OAuth device authorization
    oidc_region: str = "us-east-1"
    device_start_url: str = "https://view.awsapps.com/start"
    device_client_name: str = "Kiro IDE"
    device_scopes: list[str] = Field(default_factory=lambda: ["sso:account:access"])
    device_default_interval: int = 5
    device_poll_max_attempts: int = 20
    device_slow_down_increment: int = 5
    user_agent: str = "Kiro IDE/1.0"

    # Local verification page shown while the user approves the device
    verification_host: str = "127.0.0.1"
    verification_port: int = 19847

    @property
    def oidc_endpoint(self) -> str:
        return f"https://oidc.{self.oidc_region}.amazonaws.com"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide default settings."""
    return Settings()
