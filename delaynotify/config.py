"""Service configuration loaded from a ``.env`` file and the environment."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Mapping

from dotenv import dotenv_values

PASSWORD = "password"
_NO_CREDENTIAL = ""

_DB_CREDENTIAL_KEY = "DB_PASSWORD"
_REDIS_CREDENTIAL_KEY = "REDIS_PASSWORD"
_RABBIT_CREDENTIAL_KEY = "RABBIT_PASSWORD"

_DURATION_UNITS_NS = {
    "ns": Decimal(1),
    "us": Decimal(1_000),
    "µs": Decimal(1_000),
    "μs": Decimal(1_000),
    "ms": Decimal(1_000_000),
    "s": Decimal(1_000_000_000),
    "m": Decimal(60_000_000_000),
    "h": Decimal(3_600_000_000_000),
}

_UNIT_PATTERN = "ns|us|µs|μs|ms|s|m|h"
_NUMBER_PATTERN = r"\d+\.?\d*|\.\d+"
_COMPONENT = re.compile(rf"({_NUMBER_PATTERN})({_UNIT_PATTERN})")
_DURATION = re.compile(
    rf"(?P<sign>[-+]?)(?:(?P<zero>0)|(?P<body>(?:(?:{_NUMBER_PATTERN})(?:{_UNIT_PATTERN}))+))"
)


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"600s"``, ``"1h30m"`` or ``"100ms"``."""
    match = _DURATION.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid duration: {text!r}")
    if match.group("zero") is not None:
        return timedelta(0)
    total_ns = Decimal(0)
    for number, unit in _COMPONENT.findall(match.group("body")):
        try:
            total_ns += Decimal(number) * _DURATION_UNITS_NS[unit]
        except InvalidOperation as exc:
            raise ValueError(f"invalid duration: {text!r}") from exc
    if match.group("sign") == "-":
        total_ns = -total_ns
    return timedelta(microseconds=int(total_ns / 1000))


def _setting(env: str, default: Any, parse: Callable[[str], Any] = str) -> Any:
    return field(default=default, metadata={"env": env, "parse": parse})


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings."""

    host_name: str = _setting("SERVICE_HOST_NAME", "localhost")
    port: int = _setting("SERVICE_PORT", 8081, int)
    gin_mode: str = _setting("GIN_MODE", "debug")


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection settings."""

    host_name: str = _setting("DB_HOST_NAME", "dbPostgres")
    port: int = _setting("DB_PORT", 5432, int)
    name: str = _setting("DB_NAME", "db-postgres")
    user: str = _setting("DB_USER", "postgres")
    password: str = _setting(_DB_CREDENTIAL_KEY, PASSWORD)


@dataclass(frozen=True)
class CacheConfig:
    """Redis settings."""

    host_name: str = _setting("REDIS_HOST_NAME", "dbRedis")
    port: int = _setting("REDIS_PORT", 6379, int)
    password: str = _setting(_REDIS_CREDENTIAL_KEY, _NO_CREDENTIAL)
    db: int = _setting("REDIS_DB", 0, int)
    ttl: timedelta = _setting("REDIS_TTL", timedelta(seconds=600), parse_duration)
    warming: timedelta = _setting("REDIS_WARMING", timedelta(hours=24), parse_duration)


@dataclass(frozen=True)
class RabbitConfig:
    """RabbitMQ settings."""

    host_name: str = _setting("RABBIT_HOST_NAME", "RabbitMQ")
    port: int = _setting("RABBIT_PORT", 5672, int)
    user: str = _setting("RABBIT_USER", "rabbitMQ")
    password: str = _setting(_RABBIT_CREDENTIAL_KEY, _NO_CREDENTIAL)
    vhost: str = _setting("RABBIT_VHOST", "/")
    queue: str = _setting("RABBIT_QUEUE", "notiQueue")


@dataclass(frozen=True)
class ConsumerConfig:
    """Retry settings shared by publishing and consuming."""

    retry_count: int = _setting("RETRY_COUNT", 3, int)
    retry_delay: timedelta = _setting("RETRY_DELAY", timedelta(milliseconds=100), parse_duration)
    backoff: int = _setting("RETRY_BACKOFF", 2, int)


@dataclass(frozen=True)
class SchedulerConfig:
    """Scheduler settings."""

    interval: timedelta = _setting("SCHEDULER_INTERVAL", timedelta(seconds=60), parse_duration)


@dataclass(frozen=True)
class Config:
    """The complete service configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: CacheConfig = field(default_factory=CacheConfig)
    rabbitmq: RabbitConfig = field(default_factory=RabbitConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def _build_section(cls: type, values: Mapping[str, str]) -> Any:
    kwargs = {}
    for item in fields(cls):
        key = item.metadata["env"]
        raw = values.get(key)
        if raw is None:
            continue
        try:
            kwargs[item.name] = item.metadata["parse"](raw)
        except ValueError as exc:
            raise ValueError(f"invalid value for {key}: {raw!r}") from exc
    return cls(**kwargs)


def read_config(path: str | os.PathLike[str] = ".env", environ: Mapping[str, str] | None = None) -> Config:
    """Read the configuration from a ``.env`` file; environment variables take precedence."""
    env_path = Path(path)
    if not env_path.is_file():
        raise FileNotFoundError(f"configuration file not found: {env_path}")
    values = {key: value for key, value in dotenv_values(env_path).items() if value is not None}
    values.update(os.environ if environ is None else environ)
    return Config(
        server=_build_section(ServerConfig, values),
        db=_build_section(DatabaseConfig, values),
        redis=_build_section(CacheConfig, values),
        rabbitmq=_build_section(RabbitConfig, values),
        consumer=_build_section(ConsumerConfig, values),
        scheduler=_build_section(SchedulerConfig, values),
    )