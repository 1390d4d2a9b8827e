[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "simai"
version = "0.1.0"
description = "Building blocks for simulating collective communication in large-scale AI training clusters"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "simulation",
    "collective communication",
    "nccl",
    "network",
    "routing",
    "loggp",
    "distributed training",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["simai"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
