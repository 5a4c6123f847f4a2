[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chunkflow"
version = "0.1.0"
description = "Staged ingestion pipeline and HTTP/WebSocket service for audio chunks"
requires-python = ">=3.10"
keywords = ["audio", "pipeline", "backpressure", "ingestion", "websocket", "aiohttp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "aiohttp",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
chunkflow = "chunkflow.app:main"

[tool.hatch.build.targets.wheel]
packages = ["chunkflow"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
