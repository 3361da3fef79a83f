[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "goodmeh"
version = "0.1.0"
description = "HTTP and WebSocket backend serving places, reviews and review images, with background review ingestion."
requires-python = ">=3.10"
keywords = ["reviews", "places", "http", "websocket", "api", "starlette"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Framework :: AsyncIO",
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
    "starlette>=0.27",
    "uvicorn>=0.23",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "httpx>=0.24",
]

[project.scripts]
goodmeh = "goodmeh.app:main"

[tool.hatch.build.targets.wheel]
packages = ["goodmeh"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
