"""Picture processing unit registers, frame timing and vertical-blank NMI."""

from __future__ import annotations

from .cpu import Cpu

PPUCTRL = 0x2000
PPUMASK = 0x2001
PPUSTATUS = 0x2002
OAMADDR = 0x2003
OAMDATA = 0x2004
PPUSCROLL = 0x2005
PPUADDR = 0x2006
PPUDATA = 0x2007

DOTS_PER_SCANLINE = 341
VBLANK_SCANLINE = 241
PRE_RENDER_SCANLINE = 261
VBLANK_BIT = 0x80

# Even frames are a full 262 scanlines, odd frames skip their last dot.
FRAME_DURATIONS = (
    DOTS_PER_SCANLINE * 262,
    DOTS_PER_SCANLINE * 261 + 340,
)


class Ppu:
    """The eight PPU registers at $2000-$2007 and the dot clock.

    The PPU runs three dots for every CPU cycle and raises an NMI on the
    CPU when vertical blank starts while NMIs are enabled in PPUCTRL.
    """

    def __init__(self, cpu: Cpu) -> None:
        self.cpu = cpu
        self.registers = bytearray(8)
        self.nmi_occurred = False
        self.nmi_output = False
        self.nmi_line = False
        self.cycles = 0
        self.parity = 0
        self.frame_number = 0

    @property
    def vblank(self) -> bool:
        """Whether the vertical-blank bit of PPUSTATUS is set."""
        return bool(self.registers[2] & VBLANK_BIT)

    def _set_vblank(self, value: bool) -> None:
        if value:
            self.registers[2] |= VBLANK_BIT
        else:
            self.registers[2] &= ~VBLANK_BIT & 0xFF

    def read(self, addr: int) -> int:
        """Read a register; reading PPUSTATUS acknowledges the NMI."""
        if addr == PPUSTATUS:
            status = (self.registers[2] & ~VBLANK_BIT & 0xFF) | (
                VBLANK_BIT if self.nmi_occurred else 0
            )
            self.registers[2] = status
            self.nmi_occurred = False
            return status
        if PPUCTRL <= addr <= PPUDATA:
            return self.registers[addr & 7]
        return 0

    def write(self, addr: int, val: int) -> None:
        """Write a register; bit 7 of PPUCTRL enables the NMI."""
        val &= 0xFF
        if addr == PPUCTRL:
            self.registers[0] = val
            self.nmi_output = bool(val & 0x80)
        elif PPUMASK <= addr <= PPUDATA:
            self.registers[addr & 7] = val

    def x(self) -> int:
        """Current dot within the scanline."""
        return self.cycles % DOTS_PER_SCANLINE

    def y(self) -> int:
        """Current scanline."""
        return self.cycles // DOTS_PER_SCANLINE

    def update(self, cycles: int) -> bool:
        """Advance by ``cycles`` CPU cycles; return True when vblank begins."""
        self.cycles += 3 * cycles
        duration = FRAME_DURATIONS[self.parity]
        if self.cycles >= duration:
            self.cycles %= duration
            self.parity ^= 1
            self.frame_number += 1

        y, x = self.y(), self.x()
        started = False
        if not self.vblank and y == VBLANK_SCANLINE and x >= 1:
            self._set_vblank(True)
            self.nmi_occurred = True
            started = True

        if self.vblank and y == PRE_RENDER_SCANLINE and x >= 1:
            self._set_vblank(False)
            self.nmi_occurred = False

        previous = self.nmi_line
        self.nmi_line = self.nmi_occurred and self.nmi_output
        if not previous and self.nmi_line:
            self.cpu.cycles += self.cpu.do_nmi()

        return started