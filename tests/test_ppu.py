import pytest

from nesmu.cpu import INTERRUPT_CYCLES, Cpu
from nesmu.ppu import FRAME_DURATIONS, PPUCTRL, PPUSTATUS, VBLANK_SCANLINE, Ppu

# CPU cycles that bring the dot clock to the first dot of vblank.
TO_VBLANK = (VBLANK_SCANLINE * 341 + 1) // 3


@pytest.fixture
def memory():
    mem = bytearray(0x10000)
    mem[0xFFFA] = 0x34
    mem[0xFFFB] = 0x12
    return mem


@pytest.fixture
def cpu(memory):
    c = Cpu(memory.__getitem__, memory.__setitem__)
    c.pc = 0x8000
    return c


def test_vblank_starts_on_its_scanline(cpu):
    ppu = Ppu(cpu)
    assert ppu.update(TO_VBLANK) is True
    assert ppu.y() == VBLANK_SCANLINE
    assert ppu.x() >= 1
    assert ppu.vblank


def test_no_vblank_before_its_scanline(cpu):
    ppu = Ppu(cpu)
    assert ppu.update(TO_VBLANK - 1) is False
    assert not ppu.vblank


def test_status_read_acknowledges_vblank(cpu):
    ppu = Ppu(cpu)
    ppu.update(TO_VBLANK)
    assert ppu.read(PPUSTATUS) & 0x80 == 0x80
    assert ppu.read(PPUSTATUS) & 0x80 == 0


def test_nmi_taken_when_enabled(cpu, memory):
    ppu = Ppu(cpu)
    ppu.write(PPUCTRL, 0x80)
    ppu.update(TO_VBLANK)
    assert cpu.pc == 0x1234
    assert cpu.cycles == INTERRUPT_CYCLES
    assert memory[0x1FD] == 0x80


def test_no_nmi_when_disabled(cpu):
    ppu = Ppu(cpu)
    ppu.update(TO_VBLANK)
    assert cpu.pc == 0x8000
    assert cpu.cycles == 0


def test_enabling_nmi_during_vblank_raises_it(cpu):
    ppu = Ppu(cpu)
    ppu.update(TO_VBLANK)
    ppu.write(PPUCTRL, 0x80)
    ppu.update(0)
    assert cpu.pc == 0x1234


def test_vblank_ends_on_pre_render_line(cpu):
    ppu = Ppu(cpu)
    ppu.update(TO_VBLANK)
    ppu.update((261 * 341 + 3) // 3 - TO_VBLANK)
    assert ppu.y() == 261
    assert not ppu.vblank
    assert ppu.frame_number == 0


def test_frame_wraps_and_parity_flips(cpu):
    ppu = Ppu(cpu)
    cycles = FRAME_DURATIONS[0] // 3 + 1
    ppu.update(cycles)
    assert ppu.frame_number == 1
    assert ppu.parity == 1
    assert ppu.cycles < FRAME_DURATIONS[0]


def test_register_round_trip_and_mirrors(cpu):
    ppu = Ppu(cpu)
    ppu.write(0x2006, 0x3F)
    assert ppu.read(0x2006) == 0x3F
    ppu.write(PPUCTRL, 0x80)
    assert ppu.nmi_output
    assert ppu.read(PPUCTRL) == 0x80
    ppu.write(PPUCTRL, 0x00)
    assert not ppu.nmi_output


def test_unmapped_address_reads_zero(cpu):
    ppu = Ppu(cpu)
    ppu.write(0x2008, 0x55)
    assert ppu.read(0x2008) == 0
    assert bytes(ppu.registers) == bytes(8)