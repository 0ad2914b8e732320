[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "eventus"
version = "0.1.0"
description = "Event sourcing, CQRS projections and a transactional outbox relay on SQLite"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "event-sourcing",
    "cqrs",
    "outbox",
    "projection",
    "aggregate",
    "idempotency",
    "sqlite",
    "domain-driven-design",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["eventus"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
