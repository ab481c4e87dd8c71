"""Audio processing unit: pulse, triangle, noise and DMC channels, the frame
sequencer, the mixer and the first controller port."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, MutableSequence, Optional

from .cpu import Cpu

_log = logging.getLogger(__name__)

SQ1_VOL = 0x4000
SQ1_SWEEP = 0x4001
SQ1_LO = 0x4002
SQ1_HI = 0x4003
SQ2_VOL = 0x4004
SQ2_SWEEP = 0x4005
SQ2_LO = 0x4006
SQ2_HI = 0x4007
TRI_LINEAR = 0x4008
TRI_LO = 0x400A
TRI_HI = 0x400B
NOISE_VOL = 0x400C
NOISE_LO = 0x400E
NOISE_HI = 0x400F
DMC_FREQ = 0x4010
DMC_RAW = 0x4011
DMC_START = 0x4012
DMC_LEN = 0x4013
OAMDMA = 0x4014
SND_CHN = 0x4015
JOY1 = 0x4016
JOY2 = 0x4017

SAMPLING_FREQUENCY = 48000

# CPU cycles are counted in steps of 16000 against (1_789_773 * 16000) / 48000.
AUDIO_STEP = 16000
AUDIO_CYCLES_PER_SAMPLE = 596591

INT16_MAX = 32767
INT16_MIN = -32768

LENGTH_TABLE = (
    10, 254, 20, 2, 40, 4, 80, 6, 160, 8, 60, 10, 14, 12, 26, 14,
    12, 16, 24, 18, 48, 20, 96, 22, 192, 24, 72, 26, 16, 28, 32, 30,
)
NOISE_PERIODS = (
    4, 8, 16, 32, 64, 96, 128, 160,
    202, 254, 380, 508, 762, 1016, 2034, 4068,
)
DMC_RATES = (
    428, 380, 340, 320, 286, 254, 226, 214,
    190, 160, 142, 128, 106, 84, 72, 54,
)
DUTY_PATTERNS = (0b10000000, 0b11000000, 0b11110000, 0b00111111)
TRIANGLE_SEQUENCE = tuple(range(15, -1, -1)) + tuple(range(16))

# CPU cycles at which the frame sequencer steps, for mode 0 and mode 1.
SEQUENCER_STEPS = (
    (7457, 14913, 22371, 29830),
    (7457, 14913, 22371, 37282),
)

_CHANNEL_RANGES = (
    (SQ1_VOL, SQ2_VOL),
    (SQ2_VOL, TRI_LINEAR),
    (TRI_LINEAR, NOISE_VOL),
    (NOISE_VOL, DMC_FREQ),
    (DMC_FREQ, OAMDMA),
)

_CONTROL_REGISTERS = frozenset({SQ1_VOL, SQ2_VOL, TRI_LINEAR, NOISE_VOL, DMC_FREQ})
_SWEEP_REGISTERS = frozenset({SQ1_SWEEP, SQ2_SWEEP, DMC_RAW})
_TIMER_LO_REGISTERS = frozenset({SQ1_LO, SQ2_LO, TRI_LO, DMC_START})
_LENGTH_REGISTERS = frozenset({SQ1_HI, SQ2_HI, TRI_HI, NOISE_HI, DMC_LEN})


@dataclass(slots=True)
class Envelope:
    start_flag: bool = False
    loop_flag: bool = False
    constant_volume: bool = False
    decay: int = 0
    divider: int = 0
    period: int = 0
    duty: int = 0


@dataclass(slots=True)
class Sweep:
    enabled: bool = False
    reload_flag: bool = False
    negate_flag: bool = False
    muted: bool = False
    divider: int = 0
    period: int = 0
    shift: int = 0


@dataclass(slots=True)
class Timer:
    divider: int = 0
    period: int = 0
    phase: int = 0


@dataclass(slots=True)
class LengthCounter:
    enabled: bool = False
    counter: int = 0


@dataclass(slots=True)
class LinearCounter:
    control_flag: bool = False
    counter: int = 0
    period: int = 0


@dataclass(slots=True)
class Lfsr:
    mode_flag: bool = False
    shift_register: int = 0


@dataclass(slots=True)
class Dmc:
    enabled: bool = False
    irq_enabled_flag: bool = False
    loop_flag: bool = False
    period: int = 0
    counter: int = 0
    output: int = 0
    start: int = 0
    sample_address: int = 0
    len: int = 0
    sample_length: int = 0
    sample_buffer: int = 0
    bits_remaining: int = 0
    shift_register: int = 0
    empty_buffer_flag: bool = False
    silence_flag: bool = False


@dataclass(slots=True)
class Channel:
    """State of one sound channel; each channel uses the parts it needs."""

    env: Envelope = field(default_factory=Envelope)
    sweep: Sweep = field(default_factory=Sweep)
    timer: Timer = field(default_factory=Timer)
    lc: LengthCounter = field(default_factory=LengthCounter)
    lin: LinearCounter = field(default_factory=LinearCounter)
    lfsr: Lfsr = field(default_factory=Lfsr)
    dmc: Dmc = field(default_factory=Dmc)

    def _envelope_tick(self) -> None:
        env = self.env
        if env.start_flag:
            env.start_flag = False
            env.decay = 15
            env.divider = env.period
        elif env.divider:
            env.divider -= 1
        else:
            env.divider = env.period
            if env.decay:
                env.decay -= 1
            elif env.loop_flag:
                env.decay = 15

    def _sweep_tick(self, pulse_one: bool) -> None:
        # With a shift count of zero the period never changes, but the
        # muting logic still applies.
        sweep, timer = self.sweep, self.timer
        target = timer.period >> sweep.shift
        if sweep.negate_flag:
            target = (~target if pulse_one else -target) & 0xFFFF
        target = (target + timer.period) & 0xFFFF

        sweep.muted = timer.period < 8 or target > 2047
        if sweep.enabled and not sweep.muted and sweep.shift and not sweep.divider:
            timer.period = target

        if not sweep.divider or sweep.reload_flag:
            sweep.divider = sweep.period
            sweep.reload_flag = False
        else:
            sweep.divider -= 1

    def _length_tick(self, halted: bool) -> None:
        if self.lc.counter > 0 and not halted:
            self.lc.counter -= 1

    def _timer_tick(self, advance_phase: bool, phase_mask: int) -> None:
        timer = self.timer
        if timer.divider:
            timer.divider -= 1
        else:
            timer.divider = timer.period
            if advance_phase:
                timer.phase = (timer.phase + 1) & phase_mask

    def _noise_timer_tick(self) -> None:
        timer = self.timer
        if timer.divider:
            timer.divider -= 1
            return
        timer.divider = timer.period
        reg = self.lfsr.shift_register
        feedback = reg ^ (reg >> (6 if self.lfsr.mode_flag else 1))
        self.lfsr.shift_register = (reg >> 1) | ((feedback & 1) << 14)

    def _linear_tick(self) -> None:
        if self.env.start_flag:
            self.lin.counter = self.lin.period
        elif self.lin.counter > 0:
            self.lin.counter -= 1
        if not self.lin.control_flag:
            self.env.start_flag = False

    def _dmc_reload(self, enabled: bool) -> None:
        dmc = self.dmc
        dmc.enabled = enabled
        if not enabled:
            dmc.sample_length = 0
            return
        if dmc.sample_length:
            return
        dmc.sample_address = 0xC000 | (dmc.start << 6)
        dmc.sample_length = (dmc.len << 4) + 1

    def _volume(self) -> int:
        return self.env.period if self.env.constant_volume else self.env.decay

    def _pulse_sample(self) -> int:
        if self.sweep.muted or not self.lc.counter:
            return 0
        pattern = DUTY_PATTERNS[self.env.duty]
        return self._volume() if pattern & (1 << (7 - self.timer.phase)) else 0

    def _triangle_sample(self) -> int:
        return TRIANGLE_SEQUENCE[self.timer.phase]

    def _noise_sample(self) -> int:
        if not self.lc.counter or self.lfsr.shift_register & 1:
            return 0
        return self._volume()

    def _dmc_sample(self) -> int:
        return self.dmc.output & 127


@dataclass
class Joypad:
    """First controller: eight buttons read one bit at a time.

    Button indices follow the report order: A, B, Select, Start, Up, Down,
    Left, Right.
    """

    buttons: int = 0
    read_index: int = 0

    def press(self, index: int, pressed: bool) -> None:
        """Record button ``index`` as pressed or released."""
        if not 0 <= index < 8:
            raise ValueError(f"button index out of range: {index}")
        bit = 1 << (7 - index)
        if pressed:
            self.buttons |= bit
        else:
            self.buttons &= ~bit & 0xFF

    def read_bit(self) -> int:
        """Return the next button bit of the report; 0 once all are read."""
        index = self.read_index
        self.read_index = (self.read_index + 1) & 0xFF
        if index > 7:
            return 0
        return (self.buttons >> (7 - index)) & 1

    def reset(self) -> None:
        """Restart the report at its first button."""
        self.read_index = 0


class Apu:
    """Sound registers at $4000-$4017 and the clocked sound hardware.

    ``memory`` is the 64 KiB address space the DMC fetches samples from,
    ``sink`` receives signed 16-bit samples at the output rate.
    """

    def __init__(
        self,
        memory: MutableSequence[int],
        cpu: Cpu,
        joypad: Joypad,
        sink: Callable[[int], None],
    ) -> None:
        self.memory = memory
        self.cpu = cpu
        self.joypad = joypad
        self.sink = sink
        self.capacitor = 0.0
        self.timer_cycles = 0
        self.cpu_cycles_divided = 0
        self.cpu_cycles = 0
        self.audio_output_cycles = 0
        self.frame_counter_mode = False
        self.interrupt_inhibit_flag = False
        self.frame_interrupt_flag = False
        self.dmc_interrupt_flag = False
        self.channels = [Channel() for _ in range(5)]
        # Triangle starts at phase 16 (volume 0) to avoid an initial pop.
        self.channels[2].timer.phase = 16
        self.channels[3].lfsr.shift_register = 1

    # -- registers ------------------------------------------------------------

    def read(self, addr: int) -> int:
        """Read a register; unmapped ones return the last value on the bus."""
        if addr == SND_CHN:
            val = 0
            for bit, channel in enumerate(self.channels[:4]):
                if channel.lc.counter > 0:
                    val |= 1 << bit
            if self.channels[4].dmc.sample_length > 0:
                val |= 16
            val |= self.cpu.last_read & 32
            if self.frame_interrupt_flag:
                val |= 64
            if self.dmc_interrupt_flag:
                val |= 128
            self.frame_interrupt_flag = False
            return val
        if addr == JOY1:
            return (self.cpu.last_read & 248) | self.joypad.read_bit()
        if addr == JOY2:
            return 0
        return self.cpu.last_read

    def _channel_for(self, addr: int) -> Optional[Channel]:
        for channel, (low, high) in zip(self.channels, _CHANNEL_RANGES):
            if low <= addr < high:
                return channel
        return None

    def write(self, addr: int, val: int) -> None:
        """Write a register."""
        val &= 0xFF
        channel = self._channel_for(addr)
        self.memory[addr] = val

        if channel is not None:
            if addr in _CONTROL_REGISTERS:
                self._write_control(channel, val)
            elif addr in _SWEEP_REGISTERS:
                self._write_sweep(channel, val)
            elif addr in _TIMER_LO_REGISTERS:
                channel.timer.period = (channel.timer.period & 0xFF00) | val
                channel.dmc.start = val
            elif addr == NOISE_LO:
                channel.timer.period = NOISE_PERIODS[val & 15]
                channel.lfsr.mode_flag = bool(val & 128)
            elif addr in _LENGTH_REGISTERS:
                self._write_length(channel, addr, val)
        elif addr == SND_CHN:
            self._write_status(val)
        elif addr == JOY1:
            self.joypad.reset()
        elif addr == JOY2:
            self._write_frame_counter(val)

    def _write_control(self, channel: Channel, val: int) -> None:
        env = channel.env
        env.loop_flag = bool(val & 32)
        env.constant_volume = bool(val & 16)
        env.period = val & 15
        env.duty = val >> 6
        channel.lin.control_flag = bool(val & 128)
        channel.lin.period = val & 127
        dmc = channel.dmc
        dmc.irq_enabled_flag = bool(val & 128)
        if not dmc.irq_enabled_flag:
            self.dmc_interrupt_flag = False
        dmc.loop_flag = bool(val & 64)
        dmc.period = DMC_RATES[val & 15]

    @staticmethod
    def _write_sweep(channel: Channel, val: int) -> None:
        sweep = channel.sweep
        sweep.reload_flag = True
        sweep.enabled = bool(val & 128)
        sweep.negate_flag = bool(val & 8)
        sweep.period = ((val >> 4) & 7) + 1
        sweep.shift = val & 7
        channel.dmc.output = val & 127

    @staticmethod
    def _write_length(channel: Channel, addr: int, val: int) -> None:
        channel.env.start_flag = True
        if addr != NOISE_HI:
            channel.timer.period = ((val & 7) << 8) | (channel.timer.period & 255)
        if addr in (SQ1_HI, SQ2_HI):
            channel.timer.phase = 0
        if channel.lc.enabled:
            channel.lc.counter = LENGTH_TABLE[val >> 3]
        channel.dmc.len = val

    def _write_status(self, val: int) -> None:
        # Clearing a channel's enable bit forces its length counter to 0.
        for bit, channel in enumerate(self.channels[:4]):
            enabled = bool(val & (1 << bit))
            channel.lc.enabled = enabled
            if not enabled:
                channel.lc.counter = 0

        # Cleared first: fetching the next sample may set it again.
        self.dmc_interrupt_flag = False
        dmc_channel = self.channels[4]
        if val & 16:
            dmc_channel._dmc_reload(True)
            self._dmc_next_sample(dmc_channel)
        else:
            dmc_channel.dmc.sample_length = 0

    def _write_frame_counter(self, val: int) -> None:
        self.cpu_cycles_divided = 0
        if val & 128:
            self._quarter_frame()
            self._half_frame()
        self.frame_counter_mode = bool(val & 128)
        self.interrupt_inhibit_flag = bool(val & 64)
        if val & 64:
            self.frame_interrupt_flag = False

    # -- DMC ------------------------------------------------------------------

    def _dmc_next_sample(self, channel: Channel) -> None:
        dmc = channel.dmc
        if not dmc.sample_length or not dmc.empty_buffer_flag:
            return
        dmc.empty_buffer_flag = False
        dmc.sample_buffer = self.memory[dmc.sample_address]
        dmc.sample_address = ((dmc.sample_address + 1) & 0xFFFF) | 0x8000
        dmc.sample_length -= 1
        if not dmc.sample_length:
            if dmc.loop_flag:
                channel._dmc_reload(dmc.enabled)
            elif dmc.irq_enabled_flag:
                self.dmc_interrupt_flag = True

    def _dmc_timer_tick(self, channel: Channel) -> None:
        dmc = channel.dmc
        if dmc.counter:
            dmc.counter = (dmc.counter - 2) & 0xFFFF  # CPU versus APU cycles
            return
        dmc.counter = dmc.period

        if dmc.empty_buffer_flag:
            self._dmc_next_sample(channel)

        if not dmc.bits_remaining:
            dmc.bits_remaining = 8
            if dmc.empty_buffer_flag:
                dmc.silence_flag = True
            else:
                dmc.silence_flag = False
                dmc.shift_register = dmc.sample_buffer
                dmc.empty_buffer_flag = True

        if not dmc.silence_flag:
            if dmc.shift_register & 1:
                if dmc.output < 126:
                    dmc.output += 2
            elif dmc.output > 1:
                dmc.output -= 2

        dmc.shift_register >>= 1
        dmc.bits_remaining -= 1

    # -- frame sequencer and timers ---------------------------------------------

    def _quarter_frame(self) -> None:
        sq1, sq2, tri, noise, _ = self.channels
        sq1._envelope_tick()
        sq2._envelope_tick()
        tri._linear_tick()
        noise._envelope_tick()

    def _half_frame(self) -> None:
        sq1, sq2, tri, noise, _ = self.channels
        sq1._sweep_tick(True)
        sq2._sweep_tick(False)
        sq1._length_tick(sq1.env.loop_flag)
        sq2._length_tick(sq2.env.loop_flag)
        tri._length_tick(tri.lin.control_flag)
        noise._length_tick(noise.env.loop_flag)

    def _timers_tick(self) -> None:
        # The triangle timer runs every CPU cycle, the others every second.
        sq1, sq2, tri, noise, dmc = self.channels
        self.timer_cycles += 1

        # A triangle period below 2 would be ultrasonic; the phase holds.
        advance = tri.lin.counter > 0 and tri.lc.counter > 0 and tri.timer.period > 1
        tri._timer_tick(advance, 31)

        if self.timer_cycles < 2:
            return
        self.timer_cycles -= 2

        sq1._timer_tick(True, 7)
        sq2._timer_tick(True, 7)
        noise._noise_timer_tick()
        self._dmc_timer_tick(dmc)

    # -- output ---------------------------------------------------------------

    def mix(self) -> int:
        """Mix the channels into one DC-blocked signed 16-bit sample."""
        sq1, sq2, tri, noise, dmc = self.channels
        s0 = sq1._pulse_sample()
        s1 = sq2._pulse_sample()
        s2 = tri._triangle_sample()
        s3 = noise._noise_sample()
        s4 = dmc._dmc_sample()

        pulse_out = 0.0
        if s0 or s1:
            pulse_out = 95.88 / (8128.0 / (s0 + s1) + 100.0)

        tnd_out = 0.0
        if s2 or s3 or s4:
            calc = s2 / 8227.0 + s3 / 12241.0 + s4 / 22638.0
            tnd_out = 159.79 / (1.0 / calc + 100.0)

        level = (pulse_out + tnd_out) * 2.0
        output = level - self.capacitor
        self.capacitor = level - output * 0.999929
        sample = int(INT16_MAX * output)
        return max(INT16_MIN, min(INT16_MAX, sample))

    def tick(self) -> None:
        """Advance by one CPU cycle."""
        steps = SEQUENCER_STEPS[int(self.frame_counter_mode)]
        self.cpu_cycles = (self.cpu_cycles + 1) & 0xFFFFFFFF
        self.cpu_cycles_divided += 1
        step = self.cpu_cycles_divided

        if step in (steps[0], steps[2]):
            self._quarter_frame()
        elif step == steps[1]:
            self._quarter_frame()
            self._half_frame()
        elif step >= steps[3]:
            self._quarter_frame()
            self._half_frame()
            self.cpu_cycles_divided -= steps[3]
            if not self.frame_counter_mode and not self.interrupt_inhibit_flag:
                self.frame_interrupt_flag = True

        if self.frame_interrupt_flag or self.dmc_interrupt_flag:
            new_cycles = self.cpu.do_irq()
            self.cpu.cycles += new_cycles
            if new_cycles:
                _log.debug("APU mode 0 IRQ")

        self._timers_tick()
        sample = self.mix()

        self.audio_output_cycles += AUDIO_STEP
        while self.audio_output_cycles >= AUDIO_CYCLES_PER_SAMPLE:
            self.audio_output_cycles -= AUDIO_CYCLES_PER_SAMPLE
            self.sink(sample)

    def update(self, cycles: int) -> None:
        """Advance by ``cycles`` CPU cycles."""
        for _ in range(cycles):
            self.tick()