[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hodlbook"
version = "0.1.0"
description = "Keep a SQLite book of crypto holdings and exchanges, and work out cost basis, profit and portfolio value."
requires-python = ">=3.10"
dependencies = []
keywords = ["portfolio", "crypto", "cost-basis", "investment", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Investment",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["hodlbook"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
