"""
Recovery mode configuration.

Every value can be overridden by the host through ``RECOVERY_MODE_*``
environment variables (or a ``.env`` file); ``get_config()`` reads them once
per process.
"""
from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


MINUTE_IN_SECONDS = 60
HOUR_IN_SECONDS = 60 * MINUTE_IN_SECONDS
DAY_IN_SECONDS = 24 * HOUR_IN_SECONDS
WEEK_IN_SECONDS = 7 * DAY_IN_SECONDS
MONTH_IN_SECONDS = 30 * DAY_IN_SECONDS
YEAR_IN_SECONDS = 365 * DAY_IN_SECONDS

# Value shipped in sample configuration files, never a real secret
PLACEHOLDER_SECRET = "put your unique phrase here"

# Comma separated in the environment
CommaList = Annotated[list[str], NoDecode]


class RecoveryModeConfig(BaseSettings):
    """Host-supplied settings for recovery mode."""

    model_config = SettingsConfigDict(
        env_prefix="RECOVERY_MODE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    site_name: str = "My Site"
    site_url: str = ""
    admin_email: str = "admin@example.com"
    recovery_mode_email: str | None = Field(default=None, alias="RECOVERY_MODE_EMAIL")

    # Long-term signing secrets; unset or placeholder values are replaced
    # by generated ones persisted in the network options.
    auth_key: str | None = Field(default=None, alias="AUTH_KEY")
    auth_salt: str | None = Field(default=None, alias="AUTH_SALT")

    # Operator escape hatch: force a recovery session with this id.
    session_id: str | None = None

    email_rate_limit: int = Field(default=4 * HOUR_IN_SECONDS, ge=0)
    email_link_ttl: int | None = Field(default=None, ge=0)
    cookie_length: int = Field(default=WEEK_IN_SECONDS, ge=0)

    cookie_name: str = Field(default="recovery_mode", alias="RECOVERY_MODE_COOKIE")
    cookie_domain: str | None = None
    cookie_path: str = "/"
    site_cookie_path: str = "/"

    login_path: str = "/login"
    protected_paths: CommaList = Field(default_factory=lambda: ["/admin", "/login", "/api/recovery"])

    plugin_dir: str | None = None
    theme_dirs: CommaList = Field(default_factory=list)
    network_plugins: CommaList = Field(default_factory=list)
    multisite: bool = False
    site_meta_supported: bool = True
    network_id: int = 1
    blog_id: int = 1

    disable_fatal_error_handler: bool = False
    controller: str | None = None

    trusted_proxies: CommaList = Field(default_factory=list)

    smtp_host: str | None = None
    smtp_port: int = 25
    smtp_sender: str = "recovery-mode@localhost"

    @field_validator("protected_paths", "theme_dirs", "network_plugins", "trusted_proxies", mode="before")
    @classmethod
    def split_comma_list(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def fatal_error_handler_enabled(self) -> bool:
        return not self.disable_fatal_error_handler


@lru_cache(maxsize=1)
def get_config() -> RecoveryModeConfig:
    return RecoveryModeConfig()
