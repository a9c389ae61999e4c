"""
Configuration management for the metrics stream service.

Centralizes all configuration including:
- HTTP server binding
- SSE heartbeat and timeout settings
- Data source credentials (GitHub, Google Sheets)
- Cache, database and API token settings

The configuration is built once at the composition root (main.py) and passed
explicitly to the components that need it.
"""

import os
from dataclasses import dataclass, field


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class ServerConfig:
    """HTTP server binding."""
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 3000))


@dataclass
class StreamingConfig:
    """SSE stream settings. All durations are in seconds."""
    heartbeat_interval: float = field(default_factory=lambda: _env_float("SSE_HEARTBEAT_INTERVAL", 15.0))
    timeout: float = field(default_factory=lambda: _env_float("SSE_TIMEOUT", 120.0))
    progress_report_interval: float = field(
        default_factory=lambda: _env_float("PROGRESS_REPORT_INTERVAL", 1.0)
    )


@dataclass
class GitHubConfig:
    """GitHub pull request source."""
    token: str = field(default_factory=lambda: os.getenv("REPO_TOKEN", ""))
    owner: str = field(default_factory=lambda: os.getenv("REPO_OWNER", ""))
    repo: str = field(default_factory=lambda: os.getenv("REPO_REPO", ""))
    api_url: str = field(default_factory=lambda: os.getenv("GITHUB_API_URL", "https://api.github.com/graphql"))
    max_pages: int = field(default_factory=lambda: _env_int("GITHUB_MAX_PAGES", 100))

    def __post_init__(self):
        # REPO_REPO may carry "owner/name"
        if "/" in self.repo:
            self.owner, self.repo = self.repo.split("/", 1)

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.owner and self.repo)


@dataclass
class SheetsConfig:
    """Google Sheets manual metrics source."""
    spreadsheet_id: str = field(default_factory=lambda: os.getenv("GOOGLE_SHEETS_ID", ""))
    api_key: str = field(default_factory=lambda: os.getenv("GOOGLE_SHEETS_API_KEY", ""))
    token: str = field(default_factory=lambda: os.getenv("GOOGLE_SHEETS_TOKEN", ""))
    range: str = field(default_factory=lambda: os.getenv("GOOGLE_SHEETS_RANGE", "A:F"))
    api_base: str = "https://sheets.googleapis.com/v4"

    @property
    def enabled(self) -> bool:
        return bool(self.spreadsheet_id and (self.api_key or self.token))


@dataclass
class CacheConfig:
    """Per-source result caching."""
    ttl: float = field(default_factory=lambda: _env_float("CACHE_TTL", 3600.0))


@dataclass
class DatabaseConfig:
    """Optional persistence of computed metrics."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 1
    pool_max_size: int = 5


@dataclass
class AuthConfig:
    """Static bearer tokens accepted by the API."""
    api_tokens: list[str] = field(default_factory=lambda: _env_list("API_TOKENS"))

    @property
    def enabled(self) -> bool:
        return bool(self.api_tokens)


@dataclass
class Config:
    """Main configuration class."""

    server: ServerConfig = field(default_factory=ServerConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    default_time_period: int = 90

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.github.enabled and not self.sheets.enabled:
            issues.append("No data source configured (REPO_* or GOOGLE_SHEETS_* required)")

        if self.streaming.heartbeat_interval <= 0:
            issues.append("SSE_HEARTBEAT_INTERVAL must be positive")

        if self.streaming.timeout <= 0:
            issues.append("SSE_TIMEOUT must be positive")

        if not self.auth.enabled:
            issues.append("API_TOKENS not configured (the /metrics stream is unauthenticated)")

        return issues

    def describe(self) -> dict:
        """Non-secret summary, used by the health endpoint and the CLI."""
        return {
            "github": f"{self.github.owner}/{self.github.repo}" if self.github.enabled else None,
            "sheets": self.sheets.spreadsheet_id or None,
            "heartbeat_interval": self.streaming.heartbeat_interval,
            "timeout": self.streaming.timeout,
            "auth": self.auth.enabled,
            "database": bool(self.database.url),
        }
