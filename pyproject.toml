[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dedupcore"
version = "0.1.0"
description = "Building blocks of a chunk-level deduplicating backup pipeline: hash-file traces, file reading, fingerprint indexing, sampling, segmenting, rewriting and restore caching."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "deduplication",
    "backup",
    "fingerprint",
    "chunking",
    "index",
    "restore",
    "trace",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Backup",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dedupcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
