"""The console: ROM loading, the CPU memory map and the emulation step."""

from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from .apu import Apu, Joypad
from .cpu import Cpu, Flag
from .opcodes import Instruction, execute, get_instruction
from .ppu import Ppu

HEADER_SIZE = 16
PRG_BANK_SIZE = 0x4000
CHR_BANK_SIZE = 0x2000
PRG_START = 0x8000
RESET_VECTOR = 0xFFFC
INITIAL_CYCLES = 7

# Bytes written here are test-ROM text output.
TEXT_OUTPUT = range(0x6004, 0x6100)

BEQ = 0xF0
BRANCH_TO_SELF = 0xFE


class RomError(ValueError):
    """Raised for a ROM image of an unsupported layout."""


class EndlessLoopError(RuntimeError):
    """Raised when the program branches to itself forever."""

    def __init__(self) -> None:
        super().__init__("endless loop detected")


def load_prg(data: bytes) -> bytes:
    """Return the 32 KiB mapped at $8000 for an iNES image."""
    size = len(data)
    if size == HEADER_SIZE + 2 * PRG_BANK_SIZE + CHR_BANK_SIZE:
        return bytes(data[HEADER_SIZE:HEADER_SIZE + 2 * PRG_BANK_SIZE])
    if size in (
        HEADER_SIZE + PRG_BANK_SIZE + CHR_BANK_SIZE,
        HEADER_SIZE + CHR_BANK_SIZE + CHR_BANK_SIZE,
    ):
        bank = bytes(data[HEADER_SIZE:HEADER_SIZE + PRG_BANK_SIZE])
        return bank * 2
    raise RomError(f"unsupported ROM size: {size}")


def _discard(sample: int) -> None:
    pass


class Nes:
    """CPU, PPU, APU and controller wired to one address space."""

    def __init__(
        self,
        rom: bytes,
        sink: Optional[Callable[[int], None]] = None,
        output: Optional[TextIO] = None,
    ) -> None:
        self.memory = bytearray(0x10000)
        self.memory[PRG_START:] = load_prg(rom)
        self.output = output if output is not None else sys.stdout

        self.cpu = Cpu(self.cpu_read, self.cpu_write)
        self.cpu.s = 0xFD
        self.cpu.p = 0x24
        self.cpu.pc = self.memory[RESET_VECTOR] | (self.memory[RESET_VECTOR + 1] << 8)
        self.cpu.cycles = INITIAL_CYCLES

        self.joypad = Joypad()
        self.apu = Apu(self.memory, self.cpu, self.joypad, sink or _discard)
        self.ppu = Ppu(self.cpu)
        self.prev_cpu_cycles = 0

    def cpu_read(self, addr: int) -> int:
        """Read through the CPU memory map."""
        if addr < 0x2000:
            return self.memory[addr & 0x7FF]
        if addr < 0x4000:
            return self.ppu.read(0x2000 + (addr & 7))
        if addr < 0x4020:
            return self.apu.read(addr)
        return self.memory[addr]

    def cpu_write(self, addr: int, val: int) -> None:
        """Write through the CPU memory map."""
        if addr in TEXT_OUTPUT and val:
            self.output.write(chr(val))

        if addr < 0x2000:
            self.memory[addr & 0x7FF] = val
        elif addr < 0x4000:
            self.ppu.write(0x2000 + (addr & 7), val)
        elif addr < 0x4020:
            self.apu.write(addr, val)
        else:
            self.memory[addr] = val

    def trace_line(self, instruction: Instruction) -> str:
        """One line of execution trace for the instruction at PC."""
        cpu = self.cpu
        pc = cpu.pc
        code = "".join(
            f"{self.memory[(pc + offset) & 0xFFFF]:02x}" for offset in range(3)
        )
        vbl = 1 if self.ppu.vblank else 0
        return (
            f"PC: {pc:04x} Ins: {instruction.name} Bytes: {code} VBL:{vbl} "
            f"A:{cpu.a:02X} X:{cpu.x:02X} Y:{cpu.y:02X} P:{cpu.p | 0x20:02X} "
            f"SP:{cpu.s:02X} PPU:{self.ppu.y():3d},{self.ppu.x():3d} "
            f"CYC:{cpu.cycles}"
        )

    def _is_endless_loop(self) -> bool:
        pc = self.cpu.pc
        return (
            self.memory[pc] == BEQ
            and self.memory[(pc + 1) & 0xFFFF] == BRANCH_TO_SELF
            and self.cpu.is_flag(Flag.Z)
        )

    def run_opcode(self, debug: bool = False) -> int:
        """Execute one instruction and return the CPU cycles it took.

        Raises UnknownOpcodeError or EndlessLoopError.
        """
        cpu = self.cpu
        if cpu.dmc_halt_cycles:
            cpu.dmc_halt_cycles -= 1
            return 1

        instruction = get_instruction(cpu.read(cpu.pc))
        if debug:
            self.output.write(self.trace_line(instruction) + "\n")
        if self._is_endless_loop():
            raise EndlessLoopError()
        return execute(cpu, instruction)

    def step(self, debug: bool = False) -> bool:
        """Catch the PPU and APU up, then run one instruction.

        Returns True when the PPU has just entered vertical blank.
        """
        frame_ready = self.ppu.update(self.cpu.cycles - self.prev_cpu_cycles)
        self.apu.update(self.cpu.cycles - self.prev_cpu_cycles)
        self.prev_cpu_cycles = self.cpu.cycles
        self.cpu.cycles += self.run_opcode(debug)
        return frame_ready