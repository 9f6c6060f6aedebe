# src/dynaplan/config.py
"""
Settings loaded from the environment (and a .env file when present)
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from dotenv import load_dotenv

from .errors import ValidationError
from .models import StoreBackend

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValidationError(f"{name} must be a boolean, got {raw!r}")


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}")


def _env_set(name: str) -> FrozenSet[str]:
    raw = os.getenv(name, "")
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    store: StoreBackend = StoreBackend.DYNAMODB
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    scan_all: bool = False
    scan_tables: FrozenSet[str] = field(default_factory=frozenset)
    cached_tables: FrozenSet[str] = field(default_factory=frozenset)
    scan_limit: Optional[int] = None
    insert_nil_fields: bool = True
    remove_nil_fields: bool = False
    initial_wait: int = 1000
    wait_exponent: float = 1.05
    max_wait: int = 10 * 60 * 1000  # 10 minutes
    redis_cache_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> Settings:
        if dotenv:
            load_dotenv()

        store_name = os.getenv("DYNAPLAN_STORE", StoreBackend.DYNAMODB.value).lower()
        try:
            store = StoreBackend(store_name)
        except ValueError:
            raise ValidationError(f"Invalid DYNAPLAN_STORE: {store_name}")

        settings = cls(
            store=store,
            endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL") or None,
            region=os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or None,
            scan_all=_env_bool("DYNAPLAN_SCAN_ALL", False),
            scan_tables=_env_set("DYNAPLAN_SCAN_TABLES"),
            cached_tables=_env_set("DYNAPLAN_CACHED_TABLES"),
            scan_limit=_env_number("DYNAPLAN_SCAN_LIMIT", None, int),
            insert_nil_fields=_env_bool("DYNAPLAN_INSERT_NIL_FIELDS", True),
            remove_nil_fields=_env_bool("DYNAPLAN_REMOVE_NIL_FIELDS", False),
            initial_wait=_env_number("DYNAPLAN_INITIAL_WAIT", 1000, int),
            wait_exponent=_env_number("DYNAPLAN_WAIT_EXPONENT", 1.05, float),
            max_wait=_env_number("DYNAPLAN_MAX_WAIT", 10 * 60 * 1000, int),
            redis_cache_url=os.getenv("DYNAPLAN_REDIS_CACHE_URL") or None,
            log_level=os.getenv("DYNAPLAN_LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        logger.debug(f"Loaded settings: store={settings.store.value}, scan_all={settings.scan_all}")
        return settings

    def validate(self) -> None:
        if self.initial_wait <= 0:
            raise ValidationError("initial_wait must be positive")
        if self.wait_exponent < 1:
            raise ValidationError("wait_exponent must be >= 1")
        if self.max_wait < 0:
            raise ValidationError("max_wait must not be negative")
        if self.scan_limit is not None and self.scan_limit < 1:
            raise ValidationError("scan_limit must be a positive integer")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValidationError(f"Invalid log level: {self.log_level}")

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)
