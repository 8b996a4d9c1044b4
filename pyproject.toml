[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vechnsw"
version = "0.1.0"
description = "Storage and search for an HNSW nearest neighbour graph kept in SQLite tables"
requires-python = ">=3.10"
dependencies = []
keywords = ["sqlite", "hnsw", "vector-search", "nearest-neighbor", "ann", "embeddings"]
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
    "Topic :: Scientific/Engineering :: Information Analysis",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vechnsw"]

[tool.pytest.ini_options]
addopts = "-ra"
