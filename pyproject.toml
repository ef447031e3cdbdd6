[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "espimage"
version = "0.1.0"
description = "ESP-IDF partition tables, ESP32/ESP8266 image headers and flashing helpers"
requires-python = ">=3.10"
keywords = ["esp32", "esp8266", "firmware", "partition-table", "flash", "embedded"]
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
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["espimage"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
