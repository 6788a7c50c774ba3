[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "glint-history"
version = "0.1.0"
description = "SQLite historical storage and block-range queries for entity events"
requires-python = ">=3.10"
dependencies = []
keywords = ["sqlite", "history", "entities", "events", "blocks"]
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
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["glint_history"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
