# delaynotify

A small HTTP service for delayed notifications. Clients create a notification
with a future send time; a background scheduler picks up due notifications from
PostgreSQL and publishes them as JSON to a RabbitMQ queue. Redis caches
notifications so that lookups can avoid the database.

## Installation

```
pip install .
```

For the test suite:

```
pip install .[test]
pytest
```

## Running

```
delaynotify
delaynotify --env path/to/.env
```

The command reads its settings from a `.env` file (by default `.env` in the
working directory); the file must exist. Environment variables take precedence
over values in the file. The service stops cleanly on SIGINT or SIGTERM and
exits with status 0; it exits with status 1 if the configuration cannot be
read, or if PostgreSQL or RabbitMQ cannot be reached, or if the HTTP server
fails. If Redis cannot be reached the service logs a warning and runs without
a cache.

On start-up the service:

1. connects to PostgreSQL and creates the `notifications` table and its
   indexes if the table does not exist;
2. connects to Redis, tries to set `maxmemory` to `100mb` and
   `maxmemory-policy` to `allkeys-lru`, and warms the cache with the
   notifications created within `REDIS_WARMING`, each kept for `REDIS_TTL`;
3. connects to RabbitMQ and declares the durable queue `RABBIT_QUEUE`;
4. starts the scheduler and the HTTP server on
   `SERVICE_HOST_NAME:SERVICE_PORT`. Flask debug mode is on when `GIN_MODE`
   is `debug`.

## Configuration

| Variable             | Default       |
|----------------------|---------------|
| `SERVICE_HOST_NAME`  | `localhost`   |
| `SERVICE_PORT`       | `8081`        |
| `GIN_MODE`           | `debug`       |
| `DB_HOST_NAME`       | `dbPostgres`  |
| `DB_PORT`            | `5432`        |
| `DB_NAME`            | `db-postgres` |
| `DB_USER`            | `postgres`    |
| `DB_PASSWORD`        | `password`    |
| `REDIS_HOST_NAME`    | `dbRedis`     |
| `REDIS_PORT`         | `6379`        |
| `REDIS_PASSWORD`     | *(empty)*     |
| `REDIS_DB`           | `0`           |
| `REDIS_TTL`          | `600s`        |
| `REDIS_WARMING`      | `24h`         |
| `RABBIT_HOST_NAME`   | `RabbitMQ`    |
| `RABBIT_PORT`        | `5672`        |
| `RABBIT_USER`        | `rabbitMQ`    |
| `RABBIT_PASSWORD`    | *(empty)*     |
| `RABBIT_VHOST`       | `/`           |
| `RABBIT_QUEUE`       | `notiQueue`   |
| `RETRY_COUNT`        | `3`           |
| `RETRY_DELAY`        | `100ms`       |
| `RETRY_BACKOFF`      | `2`           |
| `SCHEDULER_INTERVAL` | `60s`         |

Durations are written with the units `ns`, `us`, `ms`, `s`, `m` and `h`, and
may combine them, as in `300ms`, `1.5h` or `1h30m`; a bare `0` is also
accepted. `RETRY_COUNT`, `RETRY_DELAY` and `RETRY_BACKOFF` set how RabbitMQ
connection and publishing are retried.

## HTTP API

- `POST /notify/`: create a notification. The body is a JSON object with
  `user_id` (non-zero integer), `channel` (list of strings), `content`
  (non-empty string) and `send_for` (RFC 3339 timestamp with `Z` or an offset,
  in the future). The reply is `201` with the stored notification, `400` with
  `{"error": "invalid request format"}` or
  `{"error": "send time must be in the future"}`, or `500` on a database error.
- `GET /notify/<uid>`: fetch a notification by its UUID, from the cache when
  present, otherwise from the database (and then cached for ten minutes). The
  reply is `200`, `400` for a malformed UUID or `404` if no notification has
  that UUID.
- `DELETE /notify/<uid>`: cancel a notification that is still scheduled. The
  reply is `200` with `{"status": "cancelled"}`, `400` for a malformed UUID,
  or `404` if the notification is unknown or no longer scheduled.

A notification is returned as JSON with the fields `uid`, `user_id`,
`channel`, `content`, `status`, `send_for`, `send_at` (only when set),
`retry_count`, `last_error` (only when non-empty) and `created_at`; timestamps
are in UTC with a `Z` suffix.

Static files are served from `./web` under `/static`, and `/` serves
`./web/index.html`. Every request is logged with its method, path, status and
duration.

## Scheduler

Once per `SCHEDULER_INTERVAL` the scheduler selects the notifications in status
`scheduled` whose `send_for` is no later than half an interval from now, and
publishes each one as JSON (`content_type` `application/json`) to the queue.
A published notification moves to status `publishing`; one that cannot be
published moves to `failed` with `last_error` set to `publish failed: ...`.
Either way its cache entry is removed.

## What the package does not do

Nothing in this package reads the RabbitMQ queue or delivers notifications to
users over e-mail, Telegram or any other channel. The statuses `sent` exist in
`delaynotify.db.Status`, but no part of the package sets a notification to
`sent` or fills in `send_at`; that is left to a separate consumer of the queue.

## Library use

The pieces can be put together by hand:

```python
import threading

from delaynotify.config import read_config
from delaynotify.db import connect_database
from delaynotify.cache import connect_cache
from delaynotify.rabbit import connect_rabbit
from delaynotify.scheduler import Scheduler
from delaynotify.server import create_app, run_server

config = read_config(".env", None)
database = connect_database(config.db)
cache = connect_cache(config.redis, database)
publisher = connect_rabbit(config.rabbitmq, config.consumer)

stop = threading.Event()
scheduler = Scheduler(database, publisher, config.scheduler.interval, cache)
threading.Thread(target=scheduler.run, args=(stop,), daemon=True).start()

app = create_app(database, cache, "./web", True)
run_server(app, config.server, stop)
```

`delaynotify.db.Database` wraps any SQLAlchemy engine, so the storage layer
can also be used with SQLite; `Database.migrate()` creates the schema.
`delaynotify.cache.Cache` wraps any Redis-compatible client object, and
`delaynotify.retry.RetryStrategy` retries a call with exponential backoff.