"""
Typed view over the loaded configuration.

config.yaml layout::

    refresh_interval: 86400
    failsafe_refresh_interval: 21600
    batch_size: 50
    lock_ttl: 1800

    source:
      token: ${AIRTABLE_PERSONAL_TOKEN}
      base_id: ${AIRTABLE_BASE_ID}
      api_url: https://api.airtable.com
      rate_limit: 5

    storage:
      backend: duckdb          # memory | duckdb | redis
      path: ./data/cache
      url: redis://localhost:6379/0
      prefix: aircache

    attachments:
      enabled: true
      storage_path: ./data/attachments
      concurrency: 5

    service:
      host: 0.0.0.0
      port: 3000
      bearer_token: ${BEARER_TOKEN}

    webhooks:
      enabled: false
      id: achXXXXXXXX
      secret: <base64 MAC secret>
      timestamp_window: 300
      idempotency_ttl: 86400

Environment variables fill the values the file leaves out.
"""

import os
from dataclasses import dataclass, field
from typing import Any

from aircache.config.loader import Config
from aircache.exceptions import ConfigurationError

DEFAULT_REFRESH_INTERVAL = 86400
DEFAULT_FAILSAFE_REFRESH_INTERVAL = 21600
DEFAULT_BATCH_SIZE = 50
DEFAULT_LOCK_TTL = 1800
DEFAULT_DOWNLOAD_CONCURRENCY = 5
DEFAULT_STORAGE_PATH = "./data/attachments"

STORE_BACKENDS = ("memory", "duckdb", "redis")


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("false", "0", "no", "off", "")


def _as_int(value: Any, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"'{name}' must be an integer, got {value!r}") from e


def _env_or(value: Any, env_var: str, default: Any = None) -> Any:
    # unresolved ${VAR} placeholders count as missing
    if value is None or (isinstance(value, str) and value.startswith("${")):
        return os.getenv(env_var, default)
    return value


@dataclass
class SourceSettings:
    token: str | None = None
    base_id: str | None = None
    api_url: str = "https://api.airtable.com"
    rate_limit: float = 5.0
    timeout: int = 60


@dataclass
class StorageSettings:
    backend: str = "memory"
    path: str = "./data/cache"
    url: str = "redis://localhost:6379/0"
    prefix: str = "aircache"


@dataclass
class AttachmentSettings:
    enabled: bool = True
    storage_path: str = DEFAULT_STORAGE_PATH
    concurrency: int = DEFAULT_DOWNLOAD_CONCURRENCY


@dataclass
class ServiceSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    bearer_token: str | None = None


@dataclass
class WebhookSettings:
    enabled: bool = False
    webhook_id: str | None = None
    secret: str | None = None
    timestamp_window: int = 300
    idempotency_ttl: int = 86400


@dataclass
class CacheSettings:
    """All runtime settings, resolved from config plus environment."""

    refresh_interval: int = DEFAULT_REFRESH_INTERVAL
    failsafe_refresh_interval: int = DEFAULT_FAILSAFE_REFRESH_INTERVAL
    batch_size: int = DEFAULT_BATCH_SIZE
    lock_ttl: int = DEFAULT_LOCK_TTL
    source: SourceSettings = field(default_factory=SourceSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    attachments: AttachmentSettings = field(default_factory=AttachmentSettings)
    service: ServiceSettings = field(default_factory=ServiceSettings)
    webhooks: WebhookSettings = field(default_factory=WebhookSettings)
    logging: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_refresh_interval(self) -> int:
        """Webhooks keep the cache fresh, so the timer only runs as a failsafe."""
        if self.webhooks.enabled:
            return self.failsafe_refresh_interval
        return self.refresh_interval

    @classmethod
    def from_config(cls, config: Config) -> "CacheSettings":
        source = config.section("source")
        storage = config.section("storage")
        attachments = config.section("attachments")
        service = config.section("service")
        webhooks = config.section("webhooks")

        settings = cls(
            refresh_interval=_as_int(
                _env_or(config.get("refresh_interval"), "REFRESH_INTERVAL"),
                DEFAULT_REFRESH_INTERVAL,
                "refresh_interval",
            ),
            failsafe_refresh_interval=_as_int(
                config.get("failsafe_refresh_interval"),
                DEFAULT_FAILSAFE_REFRESH_INTERVAL,
                "failsafe_refresh_interval",
            ),
            batch_size=_as_int(config.get("batch_size"), DEFAULT_BATCH_SIZE, "batch_size"),
            lock_ttl=_as_int(config.get("lock_ttl"), DEFAULT_LOCK_TTL, "lock_ttl"),
            source=SourceSettings(
                token=_env_or(source.get("token"), "AIRTABLE_PERSONAL_TOKEN"),
                base_id=_env_or(source.get("base_id"), "AIRTABLE_BASE_ID"),
                api_url=str(source.get("api_url", "https://api.airtable.com")),
                rate_limit=float(source.get("rate_limit", 5.0)),
                timeout=_as_int(source.get("timeout"), 60, "source.timeout"),
            ),
            storage=StorageSettings(
                backend=str(storage.get("backend", "memory")).lower(),
                path=str(storage.get("path", "./data/cache")),
                url=str(_env_or(storage.get("url"), "REDIS_URL", "redis://localhost:6379/0")),
                prefix=str(storage.get("prefix", "aircache")),
            ),
            attachments=AttachmentSettings(
                enabled=_as_bool(_env_or(attachments.get("enabled"), "ENABLE_ATTACHMENT_DOWNLOAD"), True),
                storage_path=str(_env_or(attachments.get("storage_path"), "STORAGE_PATH", DEFAULT_STORAGE_PATH)),
                concurrency=_as_int(
                    attachments.get("concurrency"), DEFAULT_DOWNLOAD_CONCURRENCY, "attachments.concurrency"
                ),
            ),
            service=ServiceSettings(
                host=str(service.get("host", "0.0.0.0")),
                port=_as_int(_env_or(service.get("port"), "PORT"), 3000, "service.port"),
                bearer_token=_env_or(service.get("bearer_token"), "BEARER_TOKEN"),
            ),
            webhooks=WebhookSettings(
                enabled=_as_bool(webhooks.get("enabled"), False),
                webhook_id=_env_or(webhooks.get("id"), "AIRTABLE_WEBHOOK_ID"),
                secret=_env_or(webhooks.get("secret"), "AIRTABLE_WEBHOOK_SECRET"),
                timestamp_window=_as_int(webhooks.get("timestamp_window"), 300, "webhooks.timestamp_window"),
                idempotency_ttl=_as_int(webhooks.get("idempotency_ttl"), 86400, "webhooks.idempotency_ttl"),
            ),
            logging=config.section("logging"),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ConfigurationError on values the engine cannot run with."""
        errors = []
        if self.storage.backend not in STORE_BACKENDS:
            errors.append(f"storage.backend must be one of {', '.join(STORE_BACKENDS)}, got '{self.storage.backend}'")
        if self.batch_size < 1:
            errors.append("batch_size must be >= 1")
        if self.lock_ttl < 1:
            errors.append("lock_ttl must be >= 1")
        if self.attachments.concurrency < 1:
            errors.append("attachments.concurrency must be >= 1")
        if self.refresh_interval < 1 or self.failsafe_refresh_interval < 1:
            errors.append("refresh intervals must be >= 1 second")
        if self.webhooks.enabled and not self.webhooks.secret:
            errors.append("webhooks.enabled requires webhooks.secret")
        if errors:
            raise ConfigurationError("\n".join(errors), details={"errors": errors})

    def require_source(self) -> None:
        """Raise unless the remote source credentials are present."""
        missing = [
            name
            for name, value in (
                ("AIRTABLE_PERSONAL_TOKEN", self.source.token),
                ("AIRTABLE_BASE_ID", self.source.base_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                "Missing required settings: " + ", ".join(missing),
                details={"missing": missing},
            )
