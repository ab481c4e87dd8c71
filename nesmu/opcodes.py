"""The 6502 instruction table and what each instruction does."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable

from .cpu import PUSHED_STATUS_BITS, Cpu, Flag

Operation = Callable[[Cpu], None]
ValueOp = Callable[[Cpu, int], None]
ModifyOp = Callable[[Cpu, int], int]

JMP_ABSOLUTE = 0x4C
BRK_VECTOR = 0xFFFE


class Mode(enum.Enum):
    """Addressing modes of the 6502."""

    ABSOLUTE = enum.auto()
    ABSOLUTE_X = enum.auto()
    ABSOLUTE_Y = enum.auto()
    ACCUMULATOR = enum.auto()
    IMMEDIATE = enum.auto()
    IMPLIED = enum.auto()
    INDIRECT = enum.auto()
    INDIRECT_X = enum.auto()
    INDIRECT_Y = enum.auto()
    RELATIVE = enum.auto()
    ZERO_PAGE = enum.auto()
    ZERO_PAGE_X = enum.auto()
    ZERO_PAGE_Y = enum.auto()

    @property
    def num_bytes(self) -> int:
        """Length of an instruction using this mode, opcode included."""
        return _MODE_BYTES[self]


_MODE_BYTES = {
    Mode.ACCUMULATOR: 1,
    Mode.IMPLIED: 1,
    Mode.IMMEDIATE: 2,
    Mode.INDIRECT_X: 2,
    Mode.INDIRECT_Y: 2,
    Mode.RELATIVE: 2,
    Mode.ZERO_PAGE: 2,
    Mode.ZERO_PAGE_X: 2,
    Mode.ZERO_PAGE_Y: 2,
    Mode.ABSOLUTE: 3,
    Mode.ABSOLUTE_X: 3,
    Mode.ABSOLUTE_Y: 3,
    Mode.INDIRECT: 3,
}

_ADDRESSERS: dict[Mode, Callable[[Cpu], int]] = {
    Mode.ZERO_PAGE: Cpu.address_zero_page,
    Mode.ZERO_PAGE_X: Cpu.address_zero_page_x,
    Mode.ZERO_PAGE_Y: Cpu.address_zero_page_y,
    Mode.ABSOLUTE: Cpu.address_absolute,
    Mode.ABSOLUTE_X: Cpu.address_absolute_x,
    Mode.ABSOLUTE_Y: Cpu.address_absolute_y,
    Mode.INDIRECT: Cpu.address_indirect,
    Mode.INDIRECT_X: Cpu.address_indirect_x,
    Mode.INDIRECT_Y: Cpu.address_indirect_y,
}


class UnknownOpcodeError(Exception):
    """Raised for an opcode that is not in the instruction table."""

    def __init__(self, opcode: int) -> None:
        super().__init__(f"unknown instruction {opcode:02x}")
        self.opcode = opcode


@dataclass(frozen=True)
class Instruction:
    """One entry of the instruction table."""

    opcode: int
    name: str
    mode: Mode
    num_cycles: int
    has_extra_cycles: bool
    operation: Operation = field(compare=False, repr=False)

    @property
    def num_bytes(self) -> int:
        return self.mode.num_bytes


# -- instructions that consume an operand value ------------------------------


def _load(register: str) -> ValueOp:
    def op(cpu: Cpu, value: int) -> None:
        setattr(cpu, register, value)
        cpu.update_zn(value)

    return op


def _and(cpu: Cpu, value: int) -> None:
    cpu.a &= value
    cpu.update_zn(cpu.a)


def _eor(cpu: Cpu, value: int) -> None:
    cpu.a ^= value
    cpu.update_zn(cpu.a)


def _ora(cpu: Cpu, value: int) -> None:
    cpu.a |= value
    cpu.update_zn(cpu.a)


def _bit(cpu: Cpu, value: int) -> None:
    cpu.set_flag(Flag.Z, not (value & cpu.a))
    cpu.set_flag(Flag.V, bool(value & Flag.V))
    cpu.set_flag(Flag.N, bool(value & Flag.N))


def _compare(register: str) -> ValueOp:
    def op(cpu: Cpu, value: int) -> None:
        reg = getattr(cpu, register)
        cpu.set_flag(Flag.C, reg >= value)
        cpu.update_zn(reg - value)

    return op


def _adc(cpu: Cpu, value: int) -> None:
    total = cpu.a + value + int(cpu.is_flag(Flag.C))
    cpu.set_flag(Flag.C, total > 0xFF)
    cpu.set_flag(Flag.V, bool(~(cpu.a ^ value) & (cpu.a ^ total) & 0x80))
    cpu.a = total & 0xFF
    cpu.update_zn(cpu.a)


def _sbc(cpu: Cpu, value: int) -> None:
    _adc(cpu, value ^ 0xFF)


_VALUE_OPS: dict[str, ValueOp] = {
    "lda": _load("a"),
    "ldx": _load("x"),
    "ldy": _load("y"),
    "and": _and,
    "eor": _eor,
    "ora": _ora,
    "bit": _bit,
    "cmp": _compare("a"),
    "cpx": _compare("x"),
    "cpy": _compare("y"),
    "adc": _adc,
    "sbc": _sbc,
}

_STORE_REGISTERS = {"sta": "a", "stx": "x", "sty": "y"}


# -- read-modify-write instructions -----------------------------------------


def _asl(cpu: Cpu, value: int) -> int:
    cpu.set_flag(Flag.C, bool(value & 0x80))
    result = (value << 1) & 0xFF
    cpu.update_zn(result)
    return result


def _lsr(cpu: Cpu, value: int) -> int:
    cpu.set_flag(Flag.C, bool(value & 1))
    result = value >> 1
    cpu.update_zn(result)
    return result


def _rol(cpu: Cpu, value: int) -> int:
    wide = (value << 1) | int(cpu.is_flag(Flag.C))
    cpu.set_flag(Flag.C, bool(wide & 0x100))
    result = wide & 0xFF
    cpu.update_zn(result)
    return result


def _ror(cpu: Cpu, value: int) -> int:
    wide = value | (int(cpu.is_flag(Flag.C)) << 8)
    cpu.set_flag(Flag.C, bool(wide & 1))
    result = (wide >> 1) & 0xFF
    cpu.update_zn(result)
    return result


def _dec(cpu: Cpu, value: int) -> int:
    result = (value - 1) & 0xFF
    cpu.update_zn(result)
    return result


def _inc(cpu: Cpu, value: int) -> int:
    result = (value + 1) & 0xFF
    cpu.update_zn(result)
    return result


_MODIFY_OPS: dict[str, ModifyOp] = {
    "asl": _asl,
    "lsr": _lsr,
    "rol": _rol,
    "ror": _ror,
    "dec": _dec,
    "inc": _inc,
}


# -- implied instructions -----------------------------------------------------


def _register_op(register: str, op: ModifyOp) -> Operation:
    def run(cpu: Cpu) -> None:
        setattr(cpu, register, op(cpu, getattr(cpu, register)))

    return run


def _transfer(source: str, target: str) -> Operation:
    def run(cpu: Cpu) -> None:
        value = getattr(cpu, source)
        setattr(cpu, target, value)
        cpu.update_zn(value)

    return run


def _flag_setter(flag: Flag, value: bool) -> Operation:
    def run(cpu: Cpu) -> None:
        cpu.set_flag(flag, value)

    return run


def _txs(cpu: Cpu) -> None:
    cpu.s = cpu.x


def _nop(cpu: Cpu) -> None:
    pass


def _pha(cpu: Cpu) -> None:
    cpu.push(cpu.a)


def _php(cpu: Cpu) -> None:
    cpu.push(cpu.p | PUSHED_STATUS_BITS)


def _pla(cpu: Cpu) -> None:
    cpu.a = cpu.pop()
    cpu.update_zn(cpu.a)


def _plp(cpu: Cpu) -> None:
    cpu.p = cpu.pop()


def _brk(cpu: Cpu) -> None:
    cpu.push16((cpu.pc + 2) & 0xFFFF)
    cpu.push(cpu.p | PUSHED_STATUS_BITS)
    cpu.set_flag(Flag.I, True)
    cpu.pc = cpu.read16(BRK_VECTOR)


def _rti(cpu: Cpu) -> None:
    cpu.p = cpu.pop() & ~Flag.B & 0xFF
    cpu.pc = cpu.pop16()


def _rts(cpu: Cpu) -> None:
    cpu.pc = (cpu.pop16() + 1) & 0xFFFF


def _jsr(cpu: Cpu) -> None:
    target = cpu.address_absolute()
    cpu.push16((cpu.pc + 2) & 0xFFFF)
    cpu.pc = target


def _jmp(mode: Mode) -> Operation:
    address = _ADDRESSERS[mode]

    def run(cpu: Cpu) -> None:
        cpu.pc = address(cpu)

    return run


_IMPLIED_OPS: dict[str, Operation] = {
    "dex": _register_op("x", _dec),
    "dey": _register_op("y", _dec),
    "inx": _register_op("x", _inc),
    "iny": _register_op("y", _inc),
    "tax": _transfer("a", "x"),
    "tay": _transfer("a", "y"),
    "tsx": _transfer("s", "x"),
    "txa": _transfer("x", "a"),
    "tya": _transfer("y", "a"),
    "txs": _txs,
    "nop": _nop,
    "pha": _pha,
    "php": _php,
    "pla": _pla,
    "plp": _plp,
    "clc": _flag_setter(Flag.C, False),
    "cld": _flag_setter(Flag.D, False),
    "cli": _flag_setter(Flag.I, False),
    "clv": _flag_setter(Flag.V, False),
    "sec": _flag_setter(Flag.C, True),
    "sed": _flag_setter(Flag.D, True),
    "sei": _flag_setter(Flag.I, True),
    "brk": _brk,
    "rti": _rti,
    "rts": _rts,
}

# Branch mnemonic -> (flag tested, flag state for which the branch is taken).
_BRANCHES: dict[str, tuple[Flag, bool]] = {
    "bcc": (Flag.C, False),
    "bcs": (Flag.C, True),
    "bne": (Flag.Z, False),
    "beq": (Flag.Z, True),
    "bpl": (Flag.N, False),
    "bmi": (Flag.N, True),
    "bvc": (Flag.V, False),
    "bvs": (Flag.V, True),
}


def _branch(flag: Flag, taken_when_set: bool) -> Operation:
    def run(cpu: Cpu) -> None:
        if cpu.is_flag(flag) == taken_when_set:
            cpu.pc = cpu.address_relative()

    return run


# -- assembling operations ---------------------------------------------------


def _with_operand(op: ValueOp, mode: Mode) -> Operation:
    if mode is Mode.IMMEDIATE:
        return lambda cpu: op(cpu, cpu.immediate())
    address = _ADDRESSERS[mode]
    return lambda cpu: op(cpu, cpu.read(address(cpu)))


def _store(register: str, mode: Mode) -> Operation:
    address = _ADDRESSERS[mode]

    def run(cpu: Cpu) -> None:
        cpu.write(address(cpu), getattr(cpu, register))

    return run


def _modify(op: ModifyOp, mode: Mode) -> Operation:
    if mode is Mode.ACCUMULATOR:
        return _register_op("a", op)
    address = _ADDRESSERS[mode]

    def run(cpu: Cpu) -> None:
        addr = address(cpu)
        cpu.write(addr, op(cpu, cpu.read(addr)))

    return run


def _operation(name: str, mode: Mode) -> Operation:
    if name in _VALUE_OPS:
        return _with_operand(_VALUE_OPS[name], mode)
    if name in _STORE_REGISTERS:
        return _store(_STORE_REGISTERS[name], mode)
    if name in _MODIFY_OPS:
        return _modify(_MODIFY_OPS[name], mode)
    if name in _BRANCHES:
        return _branch(*_BRANCHES[name])
    if name == "jmp":
        return _jmp(mode)
    if name == "jsr":
        return _jsr
    return _IMPLIED_OPS[name]


_M = Mode
_TABLE: list[tuple[int, str, Mode, int, bool]] = [
    (0x69, "adc", _M.IMMEDIATE, 2, False),
    (0x65, "adc", _M.ZERO_PAGE, 3, False),
    (0x75, "adc", _M.ZERO_PAGE_X, 4, False),
    (0x6D, "adc", _M.ABSOLUTE, 4, False),
    (0x7D, "adc", _M.ABSOLUTE_X, 4, True),
    (0x79, "adc", _M.ABSOLUTE_Y, 4, True),
    (0x61, "adc", _M.INDIRECT_X, 6, False),
    (0x71, "adc", _M.INDIRECT_Y, 5, True),
    (0x29, "and", _M.IMMEDIATE, 2, False),
    (0x25, "and", _M.ZERO_PAGE, 3, False),
    (0x35, "and", _M.ZERO_PAGE_X, 4, False),
    (0x2D, "and", _M.ABSOLUTE, 4, False),
    (0x3D, "and", _M.ABSOLUTE_X, 4, True),
    (0x39, "and", _M.ABSOLUTE_Y, 4, True),
    (0x21, "and", _M.INDIRECT_X, 6, False),
    (0x31, "and", _M.INDIRECT_Y, 5, True),
    (0x0A, "asl", _M.ACCUMULATOR, 2, False),
    (0x06, "asl", _M.ZERO_PAGE, 5, False),
    (0x16, "asl", _M.ZERO_PAGE_X, 6, False),
    (0x0E, "asl", _M.ABSOLUTE, 6, False),
    (0x1E, "asl", _M.ABSOLUTE_X, 7, False),
    (0x90, "bcc", _M.RELATIVE, 2, True),
    (0xB0, "bcs", _M.RELATIVE, 2, True),
    (0xF0, "beq", _M.RELATIVE, 2, True),
    (0x30, "bmi", _M.RELATIVE, 2, True),
    (0xD0, "bne", _M.RELATIVE, 2, True),
    (0x10, "bpl", _M.RELATIVE, 2, True),
    (0x50, "bvc", _M.RELATIVE, 2, True),
    (0x70, "bvs", _M.RELATIVE, 2, True),
    (0x24, "bit", _M.ZERO_PAGE, 3, False),
    (0x2C, "bit", _M.ABSOLUTE, 4, False),
    (0x00, "brk", _M.IMPLIED, 7, False),
    (0x18, "clc", _M.IMPLIED, 2, False),
    (0xD8, "cld", _M.IMPLIED, 2, False),
    (0x58, "cli", _M.IMPLIED, 2, False),
    (0xB8, "clv", _M.IMPLIED, 2, False),
    (0xC9, "cmp", _M.IMMEDIATE, 2, False),
    (0xC5, "cmp", _M.ZERO_PAGE, 3, False),
    (0xD5, "cmp", _M.ZERO_PAGE_X, 4, False),
    (0xCD, "cmp", _M.ABSOLUTE, 4, False),
    (0xDD, "cmp", _M.ABSOLUTE_X, 4, True),
    (0xD9, "cmp", _M.ABSOLUTE_Y, 4, True),
    (0xC1, "cmp", _M.INDIRECT_X, 6, False),
    (0xD1, "cmp", _M.INDIRECT_Y, 5, True),
    (0xE0, "cpx", _M.IMMEDIATE, 2, False),
    (0xE4, "cpx", _M.ZERO_PAGE, 3, False),
    (0xEC, "cpx", _M.ABSOLUTE, 4, False),
    (0xC0, "cpy", _M.IMMEDIATE, 2, False),
    (0xC4, "cpy", _M.ZERO_PAGE, 3, False),
    (0xCC, "cpy", _M.ABSOLUTE, 4, False),
    (0xC6, "dec", _M.ZERO_PAGE, 5, False),
    (0xD6, "dec", _M.ZERO_PAGE_X, 6, False),
    (0xCE, "dec", _M.ABSOLUTE, 6, False),
    (0xDE, "dec", _M.ABSOLUTE_X, 7, False),
    (0xCA, "dex", _M.IMPLIED, 2, False),
    (0x88, "dey", _M.IMPLIED, 2, False),
    (0x49, "eor", _M.IMMEDIATE, 2, False),
    (0x45, "eor", _M.ZERO_PAGE, 3, False),
    (0x55, "eor", _M.ZERO_PAGE_X, 4, False),
    (0x4D, "eor", _M.ABSOLUTE, 4, False),
    (0x5D, "eor", _M.ABSOLUTE_X, 4, True),
    (0x59, "eor", _M.ABSOLUTE_Y, 4, True),
    (0x41, "eor", _M.INDIRECT_X, 6, False),
    (0x51, "eor", _M.INDIRECT_Y, 5, True),
    (0xE6, "inc", _M.ZERO_PAGE, 5, False),
    (0xF6, "inc", _M.ZERO_PAGE_X, 6, False),
    (0xEE, "inc", _M.ABSOLUTE, 6, False),
    (0xFE, "inc", _M.ABSOLUTE_X, 7, False),
    (0xE8, "inx", _M.IMPLIED, 2, False),
    (0xC8, "iny", _M.IMPLIED, 2, False),
    (0x4C, "jmp", _M.ABSOLUTE, 3, False),
    (0x6C, "jmp", _M.INDIRECT, 5, False),
    (0x20, "jsr", _M.ABSOLUTE, 6, False),
    (0xA9, "lda", _M.IMMEDIATE, 2, False),
    (0xA5, "lda", _M.ZERO_PAGE, 3, False),
    (0xB5, "lda", _M.ZERO_PAGE_X, 4, False),
    (0xAD, "lda", _M.ABSOLUTE, 4, False),
    (0xBD, "lda", _M.ABSOLUTE_X, 4, True),
    (0xB9, "lda", _M.ABSOLUTE_Y, 4, True),
    (0xA1, "lda", _M.INDIRECT_X, 6, False),
    (0xB1, "lda", _M.INDIRECT_Y, 5, True),
    (0xA2, "ldx", _M.IMMEDIATE, 2, False),
    (0xA6, "ldx", _M.ZERO_PAGE, 3, False),
    (0xB6, "ldx", _M.ZERO_PAGE_Y, 4, False),
    (0xAE, "ldx", _M.ABSOLUTE, 4, False),
    (0xBE, "ldx", _M.ABSOLUTE_Y, 4, True),
    (0xA0, "ldy", _M.IMMEDIATE, 2, False),
    (0xA4, "ldy", _M.ZERO_PAGE, 3, False),
    (0xB4, "ldy", _M.ZERO_PAGE_X, 4, False),
    (0xAC, "ldy", _M.ABSOLUTE, 4, False),
    (0xBC, "ldy", _M.ABSOLUTE_X, 4, True),
    (0x4A, "lsr", _M.ACCUMULATOR, 2, False),
    (0x46, "lsr", _M.ZERO_PAGE, 5, False),
    (0x56, "lsr", _M.ZERO_PAGE_X, 6, False),
    (0x4E, "lsr", _M.ABSOLUTE, 6, False),
    (0x5E, "lsr", _M.ABSOLUTE_X, 7, False),
    (0xEA, "nop", _M.IMPLIED, 2, False),
    (0x09, "ora", _M.IMMEDIATE, 2, False),
    (0x05, "ora", _M.ZERO_PAGE, 3, False),
    (0x15, "ora", _M.ZERO_PAGE_X, 4, False),
    (0x0D, "ora", _M.ABSOLUTE, 4, False),
    (0x1D, "ora", _M.ABSOLUTE_X, 4, True),
    (0x19, "ora", _M.ABSOLUTE_Y, 4, True),
    (0x01, "ora", _M.INDIRECT_X, 6, False),
    (0x11, "ora", _M.INDIRECT_Y, 5, True),
    (0x48, "pha", _M.IMPLIED, 3, False),
    (0x08, "php", _M.IMPLIED, 3, False),
    (0x68, "pla", _M.IMPLIED, 4, False),
    (0x28, "plp", _M.IMPLIED, 4, False),
    (0x2A, "rol", _M.ACCUMULATOR, 2, False),
    (0x26, "rol", _M.ZERO_PAGE, 5, False),
    (0x36, "rol", _M.ZERO_PAGE_X, 6, False),
    (0x2E, "rol", _M.ABSOLUTE, 6, False),
    (0x3E, "rol", _M.ABSOLUTE_X, 7, False),
    (0x6A, "ror", _M.ACCUMULATOR, 2, False),
    (0x66, "ror", _M.ZERO_PAGE, 5, False),
    (0x76, "ror", _M.ZERO_PAGE_X, 6, False),
    (0x6E, "ror", _M.ABSOLUTE, 6, False),
    (0x7E, "ror", _M.ABSOLUTE_X, 7, False),
    (0x40, "rti", _M.IMPLIED, 6, False),
    (0x60, "rts", _M.IMPLIED, 6, False),
    (0xE9, "sbc", _M.IMMEDIATE, 2, False),
    (0xE5, "sbc", _M.ZERO_PAGE, 3, False),
    (0xF5, "sbc", _M.ZERO_PAGE_X, 4, False),
    (0xED, "sbc", _M.ABSOLUTE, 4, False),
    (0xFD, "sbc", _M.ABSOLUTE_X, 4, True),
    (0xF9, "sbc", _M.ABSOLUTE_Y, 4, True),
    (0xE1, "sbc", _M.INDIRECT_X, 6, False),
    (0xF1, "sbc", _M.INDIRECT_Y, 5, True),
    (0x38, "sec", _M.IMPLIED, 2, False),
    (0xF8, "sed", _M.IMPLIED, 2, False),
    (0x78, "sei", _M.IMPLIED, 2, False),
    (0x85, "sta", _M.ZERO_PAGE, 3, False),
    (0x95, "sta", _M.ZERO_PAGE_X, 4, False),
    (0x8D, "sta", _M.ABSOLUTE, 4, False),
    (0x9D, "sta", _M.ABSOLUTE_X, 5, False),
    (0x99, "sta", _M.ABSOLUTE_Y, 5, False),
    (0x81, "sta", _M.INDIRECT_X, 6, False),
    (0x91, "sta", _M.INDIRECT_Y, 6, False),
    (0x86, "stx", _M.ZERO_PAGE, 3, False),
    (0x96, "stx", _M.ZERO_PAGE_Y, 4, False),
    (0x8E, "stx", _M.ABSOLUTE, 4, False),
    (0x84, "sty", _M.ZERO_PAGE, 3, False),
    (0x94, "sty", _M.ZERO_PAGE_X, 4, False),
    (0x8C, "sty", _M.ABSOLUTE, 4, False),
    (0xAA, "tax", _M.IMPLIED, 2, False),
    (0xA8, "tay", _M.IMPLIED, 2, False),
    (0xBA, "tsx", _M.IMPLIED, 2, False),
    (0x8A, "txa", _M.IMPLIED, 2, False),
    (0x9A, "txs", _M.IMPLIED, 2, False),
    (0x98, "tya", _M.IMPLIED, 2, False),
]

INSTRUCTIONS: dict[int, Instruction] = {
    opcode: Instruction(opcode, name, mode, cycles, extra, _operation(name, mode))
    for opcode, name, mode, cycles, extra in _TABLE
}


def get_instruction(opcode: int) -> Instruction:
    """Return the table entry for ``opcode``."""
    try:
        return INSTRUCTIONS[opcode]
    except KeyError:
        raise UnknownOpcodeError(opcode) from None


def execute(cpu: Cpu, instruction: Instruction) -> int:
    """Run one instruction at ``cpu.pc`` and return the cycles it took.

    The program counter moves past the instruction unless the instruction
    itself moved it; an absolute JMP is always left where it jumped to.
    """
    start = cpu.pc
    cpu.extra_cycles = 0
    instruction.operation(cpu)
    if cpu.pc == start and instruction.opcode != JMP_ABSOLUTE:
        cpu.pc = (cpu.pc + instruction.num_bytes) & 0xFFFF
    cycles = instruction.num_cycles
    if instruction.has_extra_cycles:
        cycles += cpu.extra_cycles
    return cycles