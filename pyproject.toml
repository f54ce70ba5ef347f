[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "amp_virtio"
version = "0.1.0"
description = "Virtio split rings, virtqueues, ELF structures and remoteproc resource tables in pure Python"
requires-python = ">=3.10"
dependencies = []
keywords = ["virtio", "virtqueue", "vring", "remoteproc", "elf", "amp", "resource-table", "shared-memory"]
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
    "Topic :: Software Development :: Embedded Systems",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["amp_virtio"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
