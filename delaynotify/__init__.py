"""Delayed notification service: HTTP API, PostgreSQL storage, Redis cache and RabbitMQ publishing."""

__version__ = "0.1.0"