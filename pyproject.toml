[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "framedjson"
version = "1.0.0"
description = "Asyncio TCP server exchanging length-prefixed JSON messages"
requires-python = ">=3.10"
dependencies = []
keywords = ["asyncio", "tcp", "server", "json", "framing", "protocol"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[project.scripts]
framedjson = "framedjson.server:main"

[tool.hatch.build.targets.wheel]
packages = ["framedjson"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
