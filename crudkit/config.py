from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .store import DynamoTableStore, InMemoryTableStore

STORES = ("dynamodb", "memory")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    store: str = "dynamodb"
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    strict_keys: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.store not in STORES:
            raise ValueError(f"store must be one of {', '.join(STORES)}, got {self.store!r}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            store=env.get("CRUDKIT_STORE", "dynamodb").strip().lower(),
            region_name=env.get("AWS_REGION") or None,
            endpoint_url=env.get("DYNAMODB_ENDPOINT_URL") or None,
            strict_keys=env.get("CRUDKIT_STRICT_KEYS", "").strip().lower() in _TRUE,
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


def build_store(settings: Settings):
    """Construct the TableStore the settings ask for."""
    if settings.store == "memory":
        return InMemoryTableStore(strict_keys=settings.strict_keys)
    return DynamoTableStore(
        region_name=settings.region_name,
        endpoint_url=settings.endpoint_url,
        strict_keys=settings.strict_keys,
    )
