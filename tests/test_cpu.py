import pytest

from nesmu.cpu import Cpu, Flag


@pytest.fixture
def memory():
    return bytearray(0x10000)


@pytest.fixture
def cpu(memory):
    return Cpu(memory.__getitem__, memory.__setitem__)


def test_initial_registers(cpu):
    assert cpu.s == 0xFD
    assert cpu.p == 0x24
    assert cpu.is_flag(Flag.I)


def test_set_and_clear_flag(cpu):
    cpu.set_flag(Flag.C, True)
    assert cpu.is_flag(Flag.C)
    cpu.set_flag(Flag.C, False)
    assert not cpu.is_flag(Flag.C)
    assert cpu.is_flag(Flag.I)


@pytest.mark.parametrize("value, zero, negative", [
    (0, True, False),
    (0x80, False, True),
    (0x01, False, False),
    (0x100, True, False),
])
def test_update_zn(cpu, value, zero, negative):
    cpu.update_zn(value)
    assert cpu.is_flag(Flag.Z) is zero
    assert cpu.is_flag(Flag.N) is negative


def test_read_tracks_last_value(cpu, memory):
    memory[0x1234] = 0x5A
    assert cpu.read(0x1234) == 0x5A
    assert cpu.last_read == 0x5A


def test_read16_little_endian(cpu, memory):
    memory[0x0300] = 0x34
    memory[0x0301] = 0x12
    assert cpu.read16(0x0300) == 0x1234


def test_write_then_read_back(cpu, memory):
    cpu.write(0x0200, 0x77)
    assert memory[0x0200] == 0x77
    assert cpu.read(0x0200) == 0x77
    assert cpu.read16(0x0200) == 0x0077


def test_immediate_and_zero_page(cpu, memory):
    cpu.pc = 0x8000
    memory[0x8001] = 0xF0
    cpu.x = 0x20
    cpu.y = 0x05
    assert cpu.immediate() == 0xF0
    assert cpu.address_zero_page() == 0xF0
    assert cpu.address_zero_page_x() == (0xF0 + 0x20) & 0xFF
    assert cpu.address_zero_page_y() == 0xF0 + 0x05


def test_absolute_indexed_page_cross(cpu, memory):
    cpu.pc = 0x8000
    memory[0x8001] = 0xFF
    memory[0x8002] = 0x12
    assert cpu.address_absolute() == 0x12FF
    cpu.x = 1
    assert cpu.address_absolute_x() == 0x1300
    assert cpu.extra_cycles == 1
    cpu.y = 0
    assert cpu.address_absolute_y() == 0x12FF
    assert cpu.extra_cycles == 0


def test_indirect_page_wrap_bug(cpu, memory):
    cpu.pc = 0x8000
    memory[0x8001] = 0xFF
    memory[0x8002] = 0x02
    memory[0x02FF] = 0x34
    memory[0x0200] = 0x12
    memory[0x0300] = 0x99
    assert cpu.address_indirect() == 0x1234
    assert cpu.last_read == 0x12


def test_indirect_x_wraps_in_zero_page(cpu, memory):
    cpu.pc = 0x8000
    memory[0x8001] = 0xFE
    cpu.x = 1
    memory[0xFF] = 0x78
    memory[0x00] = 0x56
    assert cpu.address_indirect_x() == 0x5678


def test_indirect_y_page_cross(cpu, memory):
    cpu.pc = 0x8000
    memory[0x8001] = 0x10
    memory[0x10] = 0xFF
    memory[0x11] = 0x04
    cpu.y = 1
    assert cpu.address_indirect_y() == 0x0500
    assert cpu.extra_cycles == 1


def test_relative_forward_same_page(cpu, memory):
    cpu.pc = 0x8000
    memory[0x8001] = 0x10
    assert cpu.address_relative() == 0x8002 + 0x10
    assert cpu.extra_cycles == 1


def test_relative_backward_crosses_page(cpu, memory):
    cpu.pc = 0x8000
    memory[0x8001] = 0xFC  # -4
    assert cpu.address_relative() == 0x8002 - 4
    assert cpu.extra_cycles == 3


def test_stack_round_trip(cpu, memory):
    start = cpu.s
    cpu.push(0xAB)
    assert memory[0x100 + start] == 0xAB
    assert cpu.s == start - 1
    assert cpu.pop() == 0xAB
    assert cpu.s == start


def test_stack16_round_trip(cpu):
    start = cpu.s
    cpu.push16(0xBEEF)
    assert cpu.s == start - 2
    assert cpu.pop16() == 0xBEEF
    assert cpu.s == start


def test_stack_pointer_wraps(cpu, memory):
    cpu.s = 0
    cpu.push(0x42)
    assert cpu.s == 0xFF
    assert memory[0x100] == 0x42
    assert cpu.pop() == 0x42
    assert cpu.s == 0


def test_nmi_pushes_state_and_jumps(cpu, memory):
    memory[0xFFFA] = 0x00
    memory[0xFFFB] = 0x90
    cpu.pc = 0x8123
    cpu.p = 0
    assert cpu.do_nmi() == 7
    assert cpu.pc == 0x9000
    assert cpu.is_flag(Flag.I)
    status = cpu.pop()
    assert status & (Flag.B | Flag.U) == Flag.B | Flag.U
    assert cpu.pop16() == 0x8123


def test_irq_masked_does_nothing(cpu):
    cpu.pc = 0x8000
    cpu.set_flag(Flag.I, True)
    start = cpu.s
    assert cpu.do_irq() == 0
    assert cpu.pc == 0x8000
    assert cpu.s == start


def test_irq_taken_when_enabled(cpu, memory):
    memory[0xFFFE] = 0x00
    memory[0xFFFF] = 0xA0
    cpu.pc = 0x8000
    cpu.set_flag(Flag.I, False)
    assert cpu.do_irq() == 7
    assert cpu.pc == 0xA000
    assert cpu.is_flag(Flag.I)
    cpu.pop()
    assert cpu.pop16() == 0x8000