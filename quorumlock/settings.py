"""Manager settings loader."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .stores import (
    AsyncHttpStore,
    AsyncMemoryStore,
    AsyncRedisStore,
    HttpStore,
    MemoryStore,
    RedisStore,
)

REDIS_SCHEMES = ("redis", "rediss", "unix")
HTTP_SCHEMES = ("http", "https")
MEMORY_SCHEME = "memory"


class ManagerSettings(BaseModel):
    stores: List[str] = Field(min_length=1)
    retry_count: int = Field(default=10, ge=1)
    retry_delay_ms: int = Field(default=200, ge=0)
    retry_jitter_ms: int = Field(default=100, ge=0)
    clock_drift_factor: float = Field(default=0.01, ge=0, lt=1)
    connect_timeout: float = Field(default=1.0, gt=0)  # seconds
    default_validity_ms: int = Field(default=1000, gt=0)
    node_id: Optional[str] = None
    http_token: Optional[str] = None  # bearer token for http(s) stores

    @field_validator("stores")
    @classmethod
    def _known_schemes(cls, urls: List[str]) -> List[str]:
        for url in urls:
            scheme = urlsplit(url).scheme
            if scheme not in REDIS_SCHEMES + HTTP_SCHEMES + (MEMORY_SCHEME,):
                raise ValueError(f"unsupported store URL: {url!r}")
        return urls

    @classmethod
    def from_mapping(cls, data: dict) -> "ManagerSettings":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid lock manager settings: {exc}") from exc

    @classmethod
    def from_file(cls, path: Path) -> "ManagerSettings":
        data = yaml.safe_load(Path(path).read_text())
        if isinstance(data, dict) and "quorumlock" in data:
            data = data["quorumlock"]
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: expected a mapping of settings")
        return cls.from_mapping(data)


def build_stores(settings: ManagerSettings, asynchronous: bool = False) -> list:
    """Instantiate one store adapter per configured URL."""
    stores = []
    for url in settings.stores:
        scheme = urlsplit(url).scheme
        if scheme in REDIS_SCHEMES:
            store_cls = AsyncRedisStore if asynchronous else RedisStore
            stores.append(store_cls.from_url(url, timeout=settings.connect_timeout))
        elif scheme in HTTP_SCHEMES:
            store_cls = AsyncHttpStore if asynchronous else HttpStore
            stores.append(store_cls(url, token=settings.http_token, timeout=settings.connect_timeout))
        elif scheme == MEMORY_SCHEME:
            store_cls = AsyncMemoryStore if asynchronous else MemoryStore
            stores.append(store_cls(name=url))
        else:
            raise ConfigurationError(f"Unsupported store URL: {url!r}")
    return stores
