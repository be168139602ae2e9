[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kernnet"
version = "0.1.0"
description = "Pure-Python IPv4, ARP and TCP packet handling with socket argument parsing, TCP sliding windows and a SYN listener queue"
requires-python = ">=3.10"
dependencies = []
keywords = ["ipv4", "tcp", "arp", "checksum", "networking", "protocol"]
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
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kernnet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
