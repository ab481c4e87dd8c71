[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nesmu"
version = "0.1.0"
description = "A small NES emulator: 6502 CPU, APU sound synthesis and PPU frame timing"
requires-python = ">=3.10"
keywords = ["nes", "emulator", "6502", "apu", "chiptune"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Games/Entertainment",
]
dependencies = [
    "pygame",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
nesmu = "nesmu.shell:main"

[tool.hatch.build.targets.wheel]
packages = ["nesmu"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
