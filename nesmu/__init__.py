"""A small NES emulator: 6502 CPU, APU sound, PPU timing and a pygame shell."""

__version__ = "0.1.0"