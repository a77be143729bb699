[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "geminid"
version = "0.1.0"
description = "Building blocks for a Gemini protocol server: configuration model, CGI and FastCGI gateways, an imsg channel between processes and daemon setup helpers."
requires-python = ">=3.10"
dependencies = []
keywords = ["gemini", "server", "cgi", "fastcgi", "imsg", "daemon"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["geminid"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
