import socket
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from delaynotify.cache import Cache
from delaynotify.config import ServerConfig
from delaynotify.db import Database
from delaynotify.server import create_app, run_server


class FakeRedis:
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, px=None):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture
def database():
    engine = create_engine(
        "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    db = Database(engine)
    db.migrate()
    yield db
    db.close()


@pytest.fixture
def web_dir(tmp_path):
    (tmp_path / "index.html").write_text("<h1>notifier</h1>", encoding="utf-8")
    (tmp_path / "app.js").write_text("console.log(1);", encoding="utf-8")
    return tmp_path


@pytest.fixture
def client(database, web_dir):
    return create_app(database, Cache(FakeRedis()), web_dir, False).test_client()


def test_index_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "<h1>notifier</h1>"


def test_static_files(client):
    response = client.get("/static/app.js")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "console.log(1);"
    assert client.get("/static/missing.js").status_code == 404


def test_api_is_mounted(client):
    payload = {
        "user_id": 3,
        "channel": ["email"],
        "content": "ping",
        "send_for": "2099-05-05T10:00:00Z",
    }
    created = client.post("/notify/", json=payload)
    assert created.status_code == 201
    uid = created.get_json()["uid"]
    assert client.get(f"/notify/{uid}").get_json()["content"] == "ping"


def test_debug_flag(database, web_dir):
    assert create_app(database, None, web_dir, True).debug is True
    assert create_app(database, None, web_dir, False).debug is False


def test_run_server_returns_when_stopped(database, web_dir):
    app = create_app(database, None, web_dir, False)
    stop = threading.Event()
    stop.set()
    result = []
    worker = threading.Thread(
        target=lambda: result.append(run_server(app, ServerConfig("127.0.0.1", 0, "release"), stop))
    )
    worker.start()
    worker.join(10)
    assert not worker.is_alive()
    assert result == [None]


def test_run_server_raises_when_port_taken(database, web_dir):
    app = create_app(database, None, web_dir, False)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        port = holder.getsockname()[1]
        with pytest.raises(OSError):
            run_server(app, ServerConfig("127.0.0.1", port, "release"), threading.Event())