"""Periodic hand-off of due notifications to the message broker."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Any

from delaynotify.db import Database, Notification, Status

logger = logging.getLogger(__name__)


class Scheduler:
    """Every ``interval``, publish the scheduled notifications that are due."""

    def __init__(
        self,
        database: Database,
        publisher: Any,
        interval: timedelta,
        cache: Any = None,
    ) -> None:
        self.database = database
        self.publisher = publisher
        self.interval = interval
        self.cache = cache

    def run(self, stop_event: threading.Event) -> None:
        """Tick once per interval until ``stop_event`` is set."""
        seconds = self.interval.total_seconds()
        if seconds <= 0:
            raise ValueError("scheduler interval must be positive")
        logger.info("scheduler started, interval %s", self.interval)
        while not stop_event.wait(seconds):
            self.tick()
        logger.info("scheduler stopped")

    def tick(self) -> int:
        """Publish every due notification; return how many were published."""
        try:
            due = self.database.get_scheduled_notifications(self.interval)
        except Exception:
            logger.exception("failed to fetch notifications from the database")
            return 0
        published = 0
        for notification in due:
            try:
                self.publish(notification)
            except Exception:
                logger.exception("failed to publish notification %s", notification.uid)
            else:
                published += 1
        return published

    def _invalidate(self, notification: Notification) -> None:
        if self.cache is None:
            return
        try:
            self.cache.delete(str(notification.uid))
        except Exception:
            logger.exception("failed to remove notification %s from the cache", notification.uid)

    def publish(self, notification: Notification) -> None:
        """Publish one notification and record the outcome; re-raise a publishing error."""
        body = notification.to_json().encode("utf-8")
        try:
            self.publisher.publish(body)
        except Exception as exc:
            try:
                self.database.update_notification_status(
                    notification.uid,
                    Status.FAILED,
                    None,
                    notification.retry_count,
                    f"publish failed: {exc}",
                )
            except Exception:
                logger.exception("failed to mark notification %s as failed", notification.uid)
            self._invalidate(notification)
            raise

        try:
            self.database.update_notification_status(
                notification.uid, Status.PUBLISHING, None, notification.retry_count, ""
            )
        except Exception:
            logger.exception("failed to mark notification %s as publishing", notification.uid)
        self._invalidate(notification)
        logger.info("notification %s sent to the queue", notification.uid)