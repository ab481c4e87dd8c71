"""6502 processor state, memory access, addressing modes and interrupts."""

from __future__ import annotations

import enum
from typing import Callable

ReadFn = Callable[[int], int]
WriteFn = Callable[[int, int], None]

STACK_BASE = 0x100
NMI_VECTOR = 0xFFFA
IRQ_VECTOR = 0xFFFE
INTERRUPT_CYCLES = 7


class Flag(enum.IntFlag):
    """Bits of the processor status register."""

    C = 0b00000001
    Z = 0b00000010
    I = 0b00000100  # noqa: E741
    D = 0b00001000
    B = 0b00010000
    U = 0b00100000
    V = 0b01000000
    N = 0b10000000


# Bits set in the copy of P pushed by BRK, PHP and interrupts.
PUSHED_STATUS_BITS = Flag.B | Flag.U


class Cpu:
    """Registers of a 6502 together with the bus it reads and writes.

    ``read`` and ``write`` are callables giving access to the 16-bit
    address space. Addressing helpers assume ``pc`` points at the opcode
    of the instruction being executed.
    """

    def __init__(self, read: ReadFn, write: WriteFn) -> None:
        self._bus_read = read
        self._bus_write = write
        self.a = 0
        self.x = 0
        self.y = 0
        self.s = 0xFD
        self.p = 0x24
        self.pc = 0
        self.last_read = 0
        self.cycles = 0
        self.extra_cycles = 0
        self.dmc_halt_cycles = 0

    # -- status flags -------------------------------------------------------

    def is_flag(self, flag: Flag) -> bool:
        """Return whether every bit of ``flag`` is set in P."""
        return (self.p & flag) == flag

    def set_flag(self, flag: Flag, value: bool) -> None:
        """Set or clear ``flag`` in P."""
        if value:
            self.p |= flag
        else:
            self.p &= ~flag & 0xFF

    def update_zn(self, value: int) -> None:
        """Set Z and N from an 8-bit result."""
        value &= 0xFF
        self.set_flag(Flag.Z, value == 0)
        self.set_flag(Flag.N, bool(value & Flag.N))

    # -- bus access -----------------------------------------------------------

    def read(self, addr: int) -> int:
        """Read a byte and remember it as the last value on the bus."""
        val = self._bus_read(addr & 0xFFFF) & 0xFF
        self.last_read = val
        return val

    def read16(self, addr: int) -> int:
        """Read a little-endian word."""
        lo = self.read(addr)
        hi = self.read((addr + 1) & 0xFFFF)
        return lo | (hi << 8)

    def write(self, addr: int, val: int) -> None:
        """Write a byte to the bus."""
        self._bus_write(addr & 0xFFFF, val & 0xFF)

    # -- addressing modes -----------------------------------------------------

    def immediate(self) -> int:
        """Return the operand byte following the opcode."""
        return self.read(self.pc + 1)

    def _immediate_hi(self) -> int:
        return self.read(self.pc + 2)

    def address_zero_page(self) -> int:
        return self.immediate()

    def address_zero_page_x(self) -> int:
        return (self.immediate() + self.x) & 0xFF

    def address_zero_page_y(self) -> int:
        return (self.immediate() + self.y) & 0xFF

    def address_absolute(self) -> int:
        lo = self.immediate()
        hi = self._immediate_hi()
        return (hi << 8) | lo

    def _indexed(self, base: int, index: int) -> int:
        addr = (base + index) & 0xFFFF
        self.extra_cycles = int((base >> 8) != (addr >> 8))
        return addr

    def address_absolute_x(self) -> int:
        """Absolute,X; records a page crossing in ``extra_cycles``."""
        return self._indexed(self.address_absolute(), self.x)

    def address_absolute_y(self) -> int:
        """Absolute,Y; records a page crossing in ``extra_cycles``."""
        return self._indexed(self.address_absolute(), self.y)

    def _indirection(self, addr_lo: int, addr_hi: int) -> int:
        lo = self._bus_read(addr_lo) & 0xFF
        hi = self._bus_read(addr_hi) & 0xFF
        self.last_read = hi
        return (hi << 8) | lo

    def address_indirect(self) -> int:
        """(Absolute); the pointer's high byte never leaves its page."""
        addr_lo = self.address_absolute()
        addr_hi = (addr_lo & 0xFF00) | ((addr_lo + 1) & 0x00FF)
        return self._indirection(addr_lo, addr_hi)

    def address_indirect_x(self) -> int:
        """(Zero page,X)."""
        addr_lo = (self.immediate() + self.x) & 0xFF
        return self._indirection(addr_lo, (addr_lo + 1) & 0xFF)

    def address_indirect_y(self) -> int:
        """(Zero page),Y; records a page crossing in ``extra_cycles``."""
        addr_lo = self.immediate()
        base = self._indirection(addr_lo, (addr_lo + 1) & 0xFF)
        return self._indexed(base, self.y)

    def address_relative(self) -> int:
        """Branch target; ``extra_cycles`` is 1, or 3 across a page."""
        offset = self.immediate()
        if offset >= 0x80:
            offset -= 0x100
        origin = (self.pc + 2) & 0xFFFF
        target = (origin + offset) & 0xFFFF
        self.extra_cycles = 3 if (origin >> 8) != (target >> 8) else 1
        return target

    # -- stack ----------------------------------------------------------------

    def push(self, val: int) -> None:
        addr = STACK_BASE + self.s
        self.s = (self.s - 1) & 0xFF
        self._bus_write(addr, val & 0xFF)

    def pop(self) -> int:
        self.s = (self.s + 1) & 0xFF
        return self._bus_read(STACK_BASE + self.s) & 0xFF

    def push16(self, val: int) -> None:
        self.push((val >> 8) & 0xFF)
        self.push(val & 0xFF)

    def pop16(self) -> int:
        lo = self.pop()
        hi = self.pop()
        return lo | (hi << 8)

    # -- interrupts -----------------------------------------------------------

    def _interrupt(self, vector: int) -> int:
        self.push16(self.pc)
        self.push(self.p | PUSHED_STATUS_BITS)
        self.set_flag(Flag.I, True)
        self.pc = self.read16(vector)
        return INTERRUPT_CYCLES

    def do_nmi(self) -> int:
        """Take a non-maskable interrupt; return the cycles it used."""
        return self._interrupt(NMI_VECTOR)

    def do_irq(self) -> int:
        """Take an IRQ unless I is set; return the cycles it used."""
        if self.is_flag(Flag.I):
            return 0
        return self._interrupt(IRQ_VECTOR)