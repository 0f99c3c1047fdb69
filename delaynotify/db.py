"""Notification storage in a SQL database."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
    create_engine,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.engine import URL, Engine

from delaynotify.config import DatabaseConfig


class Status(str, Enum):
    """Lifecycle states of a notification."""

    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationNotFound(LookupError):
    """No notification matched the request."""


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_time(value: datetime) -> str:
    value = _as_utc(value)
    rendered = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        rendered += "." + f"{value.microsecond:06d}".rstrip("0")
    return rendered + "Z"


_TIME = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


def _parse_time(value: str) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")
    match = _TIME.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    day, clock, fraction, offset = match.groups()
    fraction = (fraction or "")[:6].ljust(6, "0")
    offset = "+00:00" if offset in ("Z", "z") else offset
    return _as_utc(datetime.fromisoformat(f"{day}T{clock}.{fraction}{offset}"))


@dataclass
class Notification:
    """A notification and its delivery state."""

    uid: uuid.UUID
    user_id: int
    channel: list[str]
    content: str
    send_for: datetime
    created_at: datetime
    status: Status = Status.SCHEDULED
    send_at: datetime | None = None
    retry_count: int = 0
    last_error: str = ""

    def __post_init__(self) -> None:
        self.status = Status(self.status)
        self.channel = list(self.channel)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping; ``send_at`` and ``last_error`` are left out when empty."""
        data: dict[str, Any] = {
            "uid": str(self.uid),
            "user_id": self.user_id,
            "channel": list(self.channel),
            "content": self.content,
            "status": self.status.value,
            "send_for": _format_time(self.send_for),
        }
        if self.send_at is not None:
            data["send_at"] = _format_time(self.send_at)
        data["retry_count"] = self.retry_count
        if self.last_error:
            data["last_error"] = self.last_error
        data["created_at"] = _format_time(self.created_at)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Notification:
        """Build a notification from the mapping produced by :meth:`to_dict`."""
        try:
            send_at = data.get("send_at")
            return cls(
                uid=uuid.UUID(str(data["uid"])),
                user_id=int(data["user_id"]),
                channel=[str(item) for item in data["channel"]],
                content=str(data["content"]),
                status=Status(data["status"]),
                send_for=_parse_time(data["send_for"]),
                send_at=None if send_at is None else _parse_time(send_at),
                retry_count=int(data.get("retry_count", 0)),
                last_error=str(data.get("last_error", "")),
                created_at=_parse_time(data["created_at"]),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"invalid notification data: {exc}") from exc

    @classmethod
    def from_json(cls, text: str) -> Notification:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("notification JSON must be an object")
        return cls.from_dict(data)


class _UTCDateTime(TypeDecorator):
    """Timezone-aware timestamps, kept in UTC on every backend."""

    impl = DateTime
    cache_ok = True

    def __init__(self) -> None:
        super().__init__(timezone=True)

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        value = _as_utc(value)
        if dialect.name != "postgresql":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        return None if value is None else _as_utc(value)


metadata = MetaData()

notifications = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("uid", Uuid, nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("channel", JSON().with_variant(ARRAY(Text), "postgresql"), nullable=False),
    Column("content", Text, nullable=False),
    Column("status", String(20), nullable=False, server_default=text("'scheduled'")),
    Column("send_for", _UTCDateTime(), nullable=False),
    Column("send_at", _UTCDateTime()),
    Column("retry_count", Integer, nullable=False, server_default=text("0")),
    Column("last_error", Text),
    Column("created_at", _UTCDateTime(), nullable=False, server_default=func.now()),
)

Index("idx_notifications_uid", notifications.c.uid, unique=True)
Index(
    "idx_notifications_status_scheduled",
    notifications.c.status,
    notifications.c.send_for,
    postgresql_where=text("status = 'scheduled'"),
    sqlite_where=text("status = 'scheduled'"),
)

_SELECT = select(
    notifications.c.uid,
    notifications.c.user_id,
    notifications.c.channel,
    notifications.c.content,
    notifications.c.status,
    notifications.c.send_for,
    notifications.c.send_at,
    notifications.c.retry_count,
    notifications.c.last_error,
    notifications.c.created_at,
)


def _from_row(row: Any) -> Notification:
    return Notification(
        uid=row.uid,
        user_id=row.user_id,
        channel=list(row.channel or []),
        content=row.content,
        status=Status(row.status),
        send_for=row.send_for,
        send_at=row.send_at,
        retry_count=row.retry_count,
        last_error=row.last_error or "",
        created_at=row.created_at,
    )


def _to_uuid(uid: uuid.UUID | str) -> uuid.UUID:
    return uid if isinstance(uid, uuid.UUID) else uuid.UUID(uid)


def build_dsn(config: DatabaseConfig) -> str:
    """Return the connection URL for the configured PostgreSQL server."""
    url = URL.create(
        "postgresql",
        username=config.user,
        password=config.password,
        host=config.host_name,
        port=config.port,
        database=config.name,
        query={"sslmode": "disable"},
    )
    return url.render_as_string(hide_password=False)


class Database:
    """Access to the ``notifications`` table."""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] | None = None) -> None:
        self.engine = engine
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def migrate(self) -> None:
        """Create the table and its indexes unless the table already exists."""
        metadata.create_all(self.engine, checkfirst=True)

    def close(self) -> None:
        self.engine.dispose()

    def create_notification(self, notification: Notification) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(notifications).values(
                    uid=notification.uid,
                    user_id=notification.user_id,
                    channel=list(notification.channel),
                    content=notification.content,
                    status=notification.status.value,
                    send_for=notification.send_for,
                    created_at=notification.created_at,
                )
            )

    def get_notification(self, uid: uuid.UUID | str) -> Notification:
        """Return the notification with ``uid`` or raise :class:`NotificationNotFound`."""
        key = _to_uuid(uid)
        with self.engine.connect() as conn:
            row = conn.execute(_SELECT.where(notifications.c.uid == key)).first()
        if row is None:
            raise NotificationNotFound(f"notification {key} not found")
        return _from_row(row)

    def cancel_notification(self, uid: uuid.UUID | str) -> None:
        """Mark a scheduled notification cancelled; raise if none is scheduled under ``uid``."""
        key = _to_uuid(uid)
        with self.engine.begin() as conn:
            result = conn.execute(
                update(notifications)
                .where(notifications.c.uid == key, notifications.c.status == Status.SCHEDULED.value)
                .values(status=Status.CANCELLED.value)
            )
        if result.rowcount == 0:
            raise NotificationNotFound(f"notification {key} not found or no longer scheduled")

    def update_notification_status(
        self,
        uid: uuid.UUID | str,
        status: Status | str,
        sent_at: datetime | None,
        retry_count: int,
        last_error: str,
    ) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(notifications)
                .where(notifications.c.uid == _to_uuid(uid))
                .values(
                    status=Status(status).value,
                    send_at=sent_at,
                    retry_count=retry_count,
                    last_error=last_error,
                )
            )

    def get_notifications_last_period(self, period: timedelta) -> list[Notification]:
        """Return notifications created within ``period`` of now."""
        since = self._clock() - period
        query = _SELECT.where(notifications.c.created_at >= since).order_by(notifications.c.id)
        with self.engine.connect() as conn:
            return [_from_row(row) for row in conn.execute(query)]

    def get_scheduled_notifications(self, interval: timedelta) -> list[Notification]:
        """Return scheduled notifications due no later than half an interval from now."""
        cutoff = self._clock() + interval / 2
        query = (
            _SELECT.where(
                notifications.c.status == Status.SCHEDULED.value,
                notifications.c.send_for <= cutoff,
            )
            .order_by(notifications.c.id)
        )
        with self.engine.connect() as conn:
            return [_from_row(row) for row in conn.execute(query)]


def connect_database(config: DatabaseConfig) -> Database:
    """Connect to PostgreSQL and make sure the schema exists."""
    engine = create_engine(
        build_dsn(config),
        pool_size=5,
        max_overflow=20,
        pool_recycle=300,
        pool_pre_ping=True,
    )
    database = Database(engine)
    try:
        database.migrate()
    except Exception:
        engine.dispose()
        raise
    return database