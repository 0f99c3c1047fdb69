import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine

from delaynotify.cache import Cache
from delaynotify.db import Database, Notification, Status
from delaynotify.scheduler import Scheduler


class FakePublisher:
    def __init__(self, fail=False):
        self.fail = fail
        self.bodies = []
        self.sent = threading.Event()

    def publish(self, body):
        if self.fail:
            raise ConnectionError("broker down")
        self.bodies.append(body)
        self.sent.set()


class FakeRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, px=None):
        self.store[key] = value

    def delete(self, key):
        self.store.pop(key, None)


class BrokenDatabase:
    def get_scheduled_notifications(self, interval):
        raise RuntimeError("database unavailable")


def make_notification(send_for):
    return Notification(
        uid=uuid.uuid4(),
        user_id=7,
        channel=["email", "telegram"],
        content="hello",
        send_for=send_for,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def database(tmp_path):
    db = Database(
        create_engine(
            f"sqlite:///{tmp_path / 'scheduler.db'}",
            connect_args={"check_same_thread": False},
        )
    )
    db.migrate()
    yield db
    db.close()


@pytest.fixture
def due(database):
    notification = make_notification(datetime.now(timezone.utc) - timedelta(minutes=1))
    database.create_notification(notification)
    return notification


def test_tick_publishes_due_notification(database, due):
    later = make_notification(datetime.now(timezone.utc) + timedelta(hours=2))
    database.create_notification(later)
    publisher = FakePublisher()
    scheduler = Scheduler(database, publisher, timedelta(seconds=60))
    assert scheduler.tick() == 1
    assert [Notification.from_json(body).uid for body in publisher.bodies] == [due.uid]
    assert database.get_notification(due.uid).status == Status.PUBLISHING
    assert database.get_notification(later.uid).status == Status.SCHEDULED


def test_published_body_is_the_notification_json(database, due):
    publisher = FakePublisher()
    Scheduler(database, publisher, timedelta(seconds=60)).tick()
    assert Notification.from_json(publisher.bodies[0].decode("utf-8")) == database.get_notification(
        due.uid
    ).__class__.from_json(due.to_json())


def test_tick_does_not_publish_twice(database, due):
    publisher = FakePublisher()
    scheduler = Scheduler(database, publisher, timedelta(seconds=60))
    scheduler.tick()
    assert scheduler.tick() == 0
    assert len(publisher.bodies) == 1


def test_publish_invalidates_cache(database, due):
    cache = Cache(FakeRedis())
    cache.set(str(due.uid), due, timedelta(minutes=10))
    Scheduler(database, FakePublisher(), timedelta(seconds=60), cache=cache).tick()
    assert cache.get(str(due.uid)) is None


def test_failed_publish_marks_notification_failed(database, due):
    cache = Cache(FakeRedis())
    cache.set(str(due.uid), due, timedelta(minutes=10))
    scheduler = Scheduler(database, FakePublisher(fail=True), timedelta(seconds=60), cache=cache)
    with pytest.raises(ConnectionError):
        scheduler.publish(due)
    stored = database.get_notification(due.uid)
    assert stored.status == Status.FAILED
    assert stored.last_error.startswith("publish failed: ")
    assert cache.get(str(due.uid)) is None


def test_tick_counts_only_successful_publishes(database, due):
    scheduler = Scheduler(database, FakePublisher(fail=True), timedelta(seconds=60))
    assert scheduler.tick() == 0
    assert database.get_notification(due.uid).status == Status.FAILED


def test_tick_survives_database_errors():
    publisher = FakePublisher()
    assert Scheduler(BrokenDatabase(), publisher, timedelta(seconds=60)).tick() == 0
    assert publisher.bodies == []


def test_run_returns_when_already_stopped(database, due):
    publisher = FakePublisher()
    stop = threading.Event()
    stop.set()
    Scheduler(database, publisher, timedelta(seconds=60)).run(stop)
    assert publisher.bodies == []


def test_run_ticks_until_stopped(database, due):
    publisher = FakePublisher()
    stop = threading.Event()
    scheduler = Scheduler(database, publisher, timedelta(milliseconds=10))
    worker = threading.Thread(target=scheduler.run, args=(stop,))
    worker.start()
    try:
        assert publisher.sent.wait(timeout=5)
    finally:
        stop.set()
        worker.join(timeout=5)
    assert not worker.is_alive()
    assert database.get_notification(due.uid).status == Status.PUBLISHING


def test_run_rejects_non_positive_interval(database):
    with pytest.raises(ValueError):
        Scheduler(database, FakePublisher(), timedelta(0)).run(threading.Event())