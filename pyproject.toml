[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "virtualsoc"
version = "1.0.0"
description = "A small social network over TCP: accounts, friends, posts, groups and chat, with LAN server discovery"
requires-python = ">=3.10"
dependencies = []
keywords = ["chat", "social network", "tcp", "sqlite", "lan discovery"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
virtualsoc-server = "virtualsoc.server:main"
virtualsoc-client = "virtualsoc.app:main"

[tool.hatch.build.targets.wheel]
packages = ["virtualsoc"]

[tool.pytest.ini_options]
addopts = "-ra"
