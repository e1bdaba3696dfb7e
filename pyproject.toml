[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "taskconsole"
version = "0.1.0"
description = "State model for an async task console: tasks, resources and async operations with sortable views and lint warnings"
requires-python = ">=3.10"
dependencies = []
keywords = ["async", "tasks", "console", "instrumentation", "diagnostics", "tracing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["taskconsole"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
