"""HTTP handlers for creating, reading and cancelling notifications."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from flask import Blueprint, jsonify, request

from delaynotify.cache import Cache
from delaynotify.db import Database, Notification, NotificationNotFound, Status, _parse_time

logger = logging.getLogger(__name__)

CACHE_TTL = timedelta(minutes=10)


class _BadRequest(ValueError):
    """The request body does not describe a notification."""


def _parse_uid(text: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(text)
    except ValueError:
        return None


def _parse_request(payload: Any) -> tuple[int, list[str], str, datetime]:
    if not isinstance(payload, dict):
        raise _BadRequest("request body must be a JSON object")

    user_id = payload.get("user_id")
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id == 0:
        raise _BadRequest("user_id is required")

    channel = payload.get("channel")
    if not isinstance(channel, list) or not all(isinstance(item, str) for item in channel):
        raise _BadRequest("channel must be a list of strings")

    content = payload.get("content")
    if not isinstance(content, str) or not content:
        raise _BadRequest("content is required")

    try:
        send_for = _parse_time(payload.get("send_for"))
    except (TypeError, ValueError) as exc:
        raise _BadRequest(f"send_for is required: {exc}") from exc

    return user_id, channel, content, send_for


def _cache_get(cache: Cache | None, key: str) -> str | None:
    if cache is None:
        return None
    try:
        return cache.get(key)
    except Exception:
        logger.debug("cache read failed for %s", key, exc_info=True)
        return None


def _cache_put(cache: Cache | None, notification: Notification) -> None:
    if cache is None:
        return
    try:
        cache.set(str(notification.uid), notification, CACHE_TTL)
    except Exception:
        logger.error("failed to cache notification %s", notification.uid, exc_info=True)


def _cache_delete(cache: Cache | None, key: str) -> None:
    if cache is None:
        return
    try:
        cache.delete(key)
    except Exception:
        logger.debug("cache delete failed for %s", key, exc_info=True)


def _error(message: str, status: int) -> tuple[Any, int]:
    return jsonify({"error": message}), status


def make_blueprint(database: Database, cache: Cache | None) -> Blueprint:
    """Return the ``/notify`` routes bound to ``database`` and an optional ``cache``."""
    blueprint = Blueprint("notify", __name__, url_prefix="/notify")

    @blueprint.post("/")
    def create_notification() -> tuple[Any, int]:
        try:
            user_id, channel, content, send_for = _parse_request(request.get_json(silent=True))
        except _BadRequest as exc:
            logger.error("invalid request format: %s", exc)
            return _error("invalid request format", 400)

        now = datetime.now(timezone.utc)
        if send_for < now:
            return _error("send time must be in the future", 400)

        uid = uuid.uuid4()
        key = str(uid)
        if _cache_get(cache, key):
            return _error("a notification with this UID already exists", 409)

        notification = Notification(
            uid=uid,
            user_id=user_id,
            channel=channel,
            content=content,
            status=Status.SCHEDULED,
            send_for=send_for,
            created_at=now,
        )
        try:
            database.create_notification(notification)
        except Exception:
            logger.exception("database error")
            return _error("database error", 500)

        _cache_put(cache, notification)
        return jsonify(notification.to_dict()), 201

    @blueprint.get("/<uid_text>")
    def get_notification(uid_text: str) -> tuple[Any, int]:
        uid = _parse_uid(uid_text)
        if uid is None:
            return _error("invalid UUID", 400)
        key = str(uid)

        cached = _cache_get(cache, key)
        if cached:
            try:
                return jsonify(Notification.from_json(cached).to_dict()), 200
            except ValueError:
                logger.error("broken cached notification %s", key, exc_info=True)
                _cache_delete(cache, key)

        try:
            notification = database.get_notification(uid)
        except NotificationNotFound:
            return _error("notification not found", 404)
        except Exception:
            logger.exception("database error")
            return _error("database error", 500)

        _cache_put(cache, notification)
        return jsonify(notification.to_dict()), 200

    @blueprint.delete("/<uid_text>")
    def cancel_notification(uid_text: str) -> tuple[Any, int]:
        uid = _parse_uid(uid_text)
        if uid is None:
            return _error("invalid UUID", 400)

        _cache_delete(cache, str(uid))
        try:
            database.cancel_notification(uid)
        except NotificationNotFound:
            return _error("notification not found or already cancelled", 404)
        except Exception:
            logger.exception("database error")
            return _error("database error", 500)

        return jsonify({"status": Status.CANCELLED.value}), 200

    return blueprint