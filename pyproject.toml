[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dcmotorctl"
version = "0.1.0"
description = "Wire protocol, serial host client and controller-side logic model for a four-channel DC motor controller"
requires-python = ">=3.10"
dependencies = [
    "pyserial",
]
keywords = [
    "motor-controller",
    "dc-motor",
    "serial",
    "cobs",
    "crc16",
    "i2c",
    "robotics",
]
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
    "Framework :: AsyncIO",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: Terminals :: Serial",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
dcmotorctl = "dcmotorctl.host:main"

[tool.hatch.build.targets.wheel]
packages = ["dcmotorctl"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
