[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "delaynotify"
version = "0.1.0"
description = "HTTP service that schedules notifications and publishes them to RabbitMQ when they fall due"
requires-python = ">=3.10"
keywords = ["notifications", "scheduler", "rabbitmq", "redis", "postgresql", "flask"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "sqlalchemy>=2.0",
    "redis>=4.5",
    "pika>=1.3",
    "flask>=2.3",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
]

[project.scripts]
delaynotify = "delaynotify.app:main"

[tool.hatch.build.targets.wheel]
packages = ["delaynotify"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
