"""
Configuration management for Schniffer
"""
import os
import yaml
from pathlib import Path
from typing import Optional, Dict
from pydantic import BaseModel, Field, field_validator
import pytz


KNOWN_PROVIDERS = ("recreation_gov", "reservecalifornia")


class HTTPConfig(BaseModel):
    timeout: float = 20.0
    connect_timeout: float = 10.0
    max_connections: int = 100
    max_keepalive_connections: int = 20
    keepalive_expiry: float = 90.0


class ProviderConfig(BaseModel):
    enabled: bool = True
    max_concurrency: int = 4
    requests_per_second: float = 2.0


class PollingConfig(BaseModel):
    interval_seconds: float = 30.0


class CatalogSyncConfig(BaseModel):
    enabled: bool = True
    interval_hours: float = 24 * 7
    min_resync_hours: float = 24
    campsite_requests_per_second: float = 0.5
    campsite_burst: int = 5
    failure_pause_seconds: float = 60.0


class DigestConfig(BaseModel):
    enabled: bool = True
    channel_id: Optional[str] = None
    hour: int = 22
    timezone: str = "America/Los_Angeles"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("hour must be between 0 and 23")
        return v


class AdhocConfig(BaseModel):
    cooldown_seconds: float = 300.0
    timeout_seconds: float = 120.0
    horizon_days: int = 31


class WebhookConfig(BaseModel):
    enabled: bool = False
    url: Optional[str] = None


class NotificationsConfig(BaseModel):
    workers: int = 4
    queue_size: int = 1000
    max_attempts: int = 3
    retry_delay_ms: int = 1000
    console: bool = True
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)


class StorageConfig(BaseModel):
    state_file: Optional[str] = "schniffer-state.json"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "schniffer.log"


def _default_providers() -> Dict[str, ProviderConfig]:
    return {
        "recreation_gov": ProviderConfig(),
        "reservecalifornia": ProviderConfig(max_concurrency=2, requests_per_second=1.0),
    }


class Config(BaseModel):
    """Main configuration class"""
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    providers: Dict[str, ProviderConfig] = Field(default_factory=_default_providers)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    catalog_sync: CatalogSyncConfig = Field(default_factory=CatalogSyncConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    adhoc: AdhocConfig = Field(default_factory=AdhocConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("providers")
    @classmethod
    def validate_providers(cls, v: Dict[str, ProviderConfig]) -> Dict[str, ProviderConfig]:
        for name in v:
            if name not in KNOWN_PROVIDERS:
                raise ValueError(f"Unknown provider in config: {name}")
        return v

    @property
    def enabled_providers(self) -> list[str]:
        return [name for name, p in self.providers.items() if p.enabled]

    def provider(self, name: str) -> ProviderConfig:
        return self.providers.get(name) or ProviderConfig()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from YAML file"""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        config = cls()
        if os.environ.get("SCHNIFFER_STATE_FILE"):
            config.storage.state_file = os.environ["SCHNIFFER_STATE_FILE"]
        if os.environ.get("SCHNIFFER_WEBHOOK_URL"):
            config.notifications.webhook = WebhookConfig(
                enabled=True,
                url=os.environ["SCHNIFFER_WEBHOOK_URL"]
            )
        if os.environ.get("SCHNIFFER_SUMMARY_CHANNEL"):
            config.digest.channel_id = os.environ["SCHNIFFER_SUMMARY_CHANNEL"]
        if os.environ.get("SCHNIFFER_POLL_INTERVAL"):
            config.polling.interval_seconds = float(os.environ["SCHNIFFER_POLL_INTERVAL"])
        if os.environ.get("SCHNIFFER_LOG_LEVEL"):
            config.logging.level = os.environ["SCHNIFFER_LOG_LEVEL"]
        return config

    def to_yaml(self, path: str | Path):
        """Save configuration to YAML file"""
        path = Path(path)
        with open(path, 'w') as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment"""
    if path:
        return Config.from_yaml(path)

    # Try default locations
    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".schniffer" / "config.yaml",
    ]

    for p in default_paths:
        if p.exists():
            return Config.from_yaml(p)

    return Config.from_env()
