import os
import re
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file early so env vars are available for YAML interpolation
_env_file = Path(__file__).parent.parent / ".env"
load_dotenv(_env_file)

# Pattern to match $VAR_NAME environment variable references
ENV_VAR_PATTERN = re.compile(r"\$([A-Z_][A-Z0-9_]*)")

CONFIG_FILE_NAME = "app.yaml"


def interpolate_env_vars(value):
    """Recursively replace $VAR_NAME with os.environ values."""
    if isinstance(value, str):

        def replace(match):
            var = match.group(1)
            val = os.environ.get(var)
            if val is None:
                raise ValueError(f"Environment variable ${var} not set")
            return val

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    return value


def get_config_path() -> Path:
    """Path of the app.yaml consulted by get_settings()."""
    return Path(os.environ.get("SMARTBOOKMARK_CONFIG", Path.cwd() / CONFIG_FILE_NAME))


def load_app_config(config_path: Path | None = None) -> dict:
    """Load and parse app.yaml with environment variable interpolation."""
    config_path = config_path or get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"{CONFIG_FILE_NAME} not found at {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    return interpolate_env_vars(config)


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = "sqlite+aiosqlite:///./smartbookmark.db"
    pool_size: int = 5
    pool_overflow: int = 10
    pool_timeout: int = 30
    pool_pre_ping: bool = False
    echo: bool = False


class OAuthProviderConfig(BaseModel):
    """OAuth provider configuration."""

    client_id: str = ""
    client_secret: str = ""
    scopes: list[str] = ["openid", "email", "profile"]


class AuthConfig(BaseModel):
    """Authentication configuration."""

    redirect_base_url: str = "http://localhost:8080"
    providers: dict[str, OAuthProviderConfig] = {}
    allowed_redirect_domains: list[str] = []
    # Where a successful sign-in lands when no "next" was requested
    default_next: str = "/dashboard"

    def get_redirect_uri(self, provider: str) -> str:
        """Get the OAuth callback URL for a provider."""
        return f"{self.redirect_base_url}/auth/{provider}/callback"


class SessionConfig(BaseModel):
    """Cookie-backed session configuration."""

    cookie_name: str = "session"
    max_age: int = 60 * 60 * 24 * 7
    cookie_domain: str | None = None


class FeedConfig(BaseModel):
    """Realtime change feed configuration.

    ``backend`` is a ``module:ClassName`` spec; empty means in-process only.
    """

    backend: str = ""
    keepalive_seconds: float = 30.0


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379/0"
    prefix: str = ""

    def make_key(self, *parts: str) -> str:
        """Join key parts, prepending the configured prefix if any."""
        if self.prefix:
            return ":".join([self.prefix, *parts])
        return ":".join(parts)


class LogfireConfig(BaseModel):
    enabled: bool = False
    service_name: str = "smartbookmark"
    environment: str | None = None
    sample_rate: float = 1.0
    console: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    debug: bool = False
    secret_key: str
    site_name: str = "Smart Bookmark"

    # Sections loaded from app.yaml
    db: DatabaseConfig = DatabaseConfig()
    auth: AuthConfig = AuthConfig()
    session: SessionConfig = SessionConfig()
    feed: FeedConfig = FeedConfig()
    redis: RedisConfig = RedisConfig()
    logfire: LogfireConfig = LogfireConfig()
    log: LoggingConfig = LoggingConfig()


_SECTIONS: dict[str, type[BaseModel]] = {
    "db": DatabaseConfig,
    "auth": AuthConfig,
    "session": SessionConfig,
    "feed": FeedConfig,
    "redis": RedisConfig,
    "logfire": LogfireConfig,
    "log": LoggingConfig,
}


def build_settings(app_config: dict | None = None, **overrides) -> Settings:
    """Create settings from the environment, merged with a parsed app.yaml dict."""
    base_settings = Settings(**overrides)
    if not app_config:
        return base_settings

    updates = {}
    for key in ("debug", "site_name"):
        if key in app_config:
            updates[key] = app_config[key]

    for section, model in _SECTIONS.items():
        if section in app_config:
            updates[section] = model(**(app_config[section] or {}))

    if updates:
        return base_settings.model_copy(update=updates)

    return base_settings


@lru_cache
def get_settings() -> Settings:
    """Load settings from .env and app.yaml."""
    try:
        app_config = load_app_config()
    except FileNotFoundError:
        app_config = None

    return build_settings(app_config)
