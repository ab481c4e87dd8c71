import pytest

from nesmu.apu import (
    AUDIO_CYCLES_PER_SAMPLE,
    AUDIO_STEP,
    DMC_FREQ,
    DMC_LEN,
    DMC_RAW,
    DMC_START,
    INT16_MAX,
    INT16_MIN,
    JOY1,
    JOY2,
    LENGTH_TABLE,
    NOISE_LO,
    SEQUENCER_STEPS,
    SND_CHN,
    SQ1_HI,
    SQ1_LO,
    SQ1_SWEEP,
    SQ1_VOL,
    SQ2_HI,
    SQ2_LO,
    SQ2_SWEEP,
    Apu,
    Joypad,
)
from nesmu.cpu import INTERRUPT_CYCLES, Cpu, Flag


@pytest.fixture
def rig():
    memory = bytearray(0x10000)
    cpu = Cpu(memory.__getitem__, memory.__setitem__)
    joypad = Joypad()
    samples = []
    apu = Apu(memory, cpu, joypad, samples.append)
    return apu, memory, cpu, joypad, samples


def test_joypad_reports_buttons_in_order():
    pad = Joypad()
    pad.press(0, True)
    pad.press(3, True)
    pad.press(7, True)
    bits = [pad.read_bit() for _ in range(8)]
    assert bits == [1, 0, 0, 1, 0, 0, 0, 1]
    assert pad.read_bit() == 0
    pad.reset()
    assert pad.read_bit() == 1


def test_joypad_release_clears_button():
    pad = Joypad()
    pad.press(2, True)
    pad.press(2, False)
    assert pad.buttons == 0


@pytest.mark.parametrize("index", [-1, 8])
def test_joypad_rejects_bad_index(index):
    with pytest.raises(ValueError):
        Joypad().press(index, True)


def test_joy1_read_combines_bus_and_button(rig):
    apu, _, cpu, joypad, _ = rig
    joypad.press(0, True)
    apu.write(JOY1, 1)
    cpu.last_read = 0x40
    assert apu.read(JOY1) == 0x41
    cpu.last_read = 0x40
    assert apu.read(JOY1) == 0x40


def test_joy2_reads_zero_and_unmapped_reads_bus(rig):
    apu, _, cpu, _, _ = rig
    cpu.last_read = 0x5A
    assert apu.read(JOY2) == 0
    assert apu.read(0x4018) == 0x5A


def test_write_is_stored_in_memory(rig):
    apu, memory, _, _, _ = rig
    apu.write(SQ1_VOL, 0x3F)
    assert memory[SQ1_VOL] == 0x3F


def test_length_counter_loaded_only_when_enabled(rig):
    apu, _, cpu, _, _ = rig
    cpu.last_read = 0
    apu.write(SQ1_HI, 0x08)
    assert apu.channels[0].lc.counter == 0
    apu.write(SND_CHN, 0x01)
    apu.write(SQ1_HI, 0x08)
    assert apu.channels[0].lc.counter == LENGTH_TABLE[1]
    assert apu.read(SND_CHN) & 1 == 1
    apu.write(SND_CHN, 0x00)
    assert apu.channels[0].lc.counter == 0
    assert apu.read(SND_CHN) & 1 == 0


def test_mode_one_write_clocks_half_frame(rig):
    apu, _, _, _, _ = rig
    apu.write(SND_CHN, 0x01)
    apu.write(SQ1_VOL, 0x00)
    apu.write(SQ1_HI, 0x08)
    before = apu.channels[0].lc.counter
    apu.write(JOY2, 0x80)
    assert apu.channels[0].lc.counter == before - 1
    assert apu.frame_counter_mode is True


def test_length_counter_halt_flag(rig):
    apu, _, _, _, _ = rig
    apu.write(SND_CHN, 0x01)
    apu.write(SQ1_VOL, 0x20)
    apu.write(SQ1_HI, 0x08)
    before = apu.channels[0].lc.counter
    apu.write(JOY2, 0x80)
    assert apu.channels[0].lc.counter == before


def test_frame_interrupt_in_mode_zero(rig):
    apu, _, cpu, _, _ = rig
    apu.write(JOY2, 0x00)
    apu.update(SEQUENCER_STEPS[0][3] - 1)
    assert apu.frame_interrupt_flag is False
    apu.update(1)
    assert apu.frame_interrupt_flag is True
    cpu.last_read = 0
    assert apu.read(SND_CHN) & 64 == 64
    assert apu.frame_interrupt_flag is False


def test_frame_interrupt_inhibited(rig):
    apu, _, _, _, _ = rig
    apu.write(JOY2, 0x40)
    apu.update(SEQUENCER_STEPS[0][3])
    assert apu.frame_interrupt_flag is False


def test_irq_taken_when_interrupts_enabled(rig):
    apu, memory, cpu, _, _ = rig
    memory[0xFFFE] = 0x34
    memory[0xFFFF] = 0x12
    cpu.p = 0
    apu.frame_interrupt_flag = True
    before = cpu.cycles
    apu.tick()
    assert cpu.pc == 0x1234
    assert cpu.cycles == before + INTERRUPT_CYCLES
    assert cpu.is_flag(Flag.I)


def test_irq_not_taken_with_i_flag(rig):
    apu, _, cpu, _, _ = rig
    cpu.p = 0x24
    cpu.pc = 0x8000
    apu.frame_interrupt_flag = True
    apu.tick()
    assert cpu.pc == 0x8000


def test_dmc_control_write_clears_interrupt(rig):
    apu, _, _, _, _ = rig
    apu.dmc_interrupt_flag = True
    apu.write(DMC_FREQ, 0x80)
    assert apu.dmc_interrupt_flag is True
    apu.write(DMC_FREQ, 0x00)
    assert apu.dmc_interrupt_flag is False


def test_dmc_enable_sets_sample_and_status(rig):
    apu, _, cpu, _, _ = rig
    apu.write(DMC_START, 0)
    apu.write(DMC_LEN, 0)
    apu.write(SND_CHN, 0x10)
    dmc = apu.channels[4].dmc
    assert dmc.sample_address == 0xC000
    assert dmc.sample_length == 1
    cpu.last_read = 0
    assert apu.read(SND_CHN) & 16 == 16
    apu.write(SND_CHN, 0x00)
    assert apu.read(SND_CHN) & 16 == 0


def test_sweep_negate_differs_between_pulses(rig):
    apu, _, _, _, _ = rig
    for lo, hi, sweep in ((SQ1_LO, SQ1_HI, SQ1_SWEEP), (SQ2_LO, SQ2_HI, SQ2_SWEEP)):
        apu.write(lo, 0x00)
        apu.write(hi, 0x01)
        apu.write(sweep, 0x89)
    apu.write(JOY2, 0x80)
    first = apu.channels[0].timer.period
    second = apu.channels[1].timer.period
    assert second < 0x100
    assert first == second - 1


def test_silence_at_power_on(rig):
    apu, _, _, _, _ = rig
    assert apu.channels[2].timer.phase == 16
    assert apu.mix() == 0


def test_dc_blocker_decays(rig):
    apu, _, _, _, _ = rig
    apu.write(DMC_RAW, 0x40)
    values = [apu.mix() for _ in range(20)]
    assert values[0] > 0
    assert all(a >= b for a, b in zip(values, values[1:]))
    assert all(INT16_MIN <= v <= INT16_MAX for v in values)


def test_noise_register_stays_fifteen_bits(rig):
    apu, _, _, _, _ = rig
    apu.write(NOISE_LO, 0x00)
    seen = set()
    for _ in range(200):
        apu.tick()
        reg = apu.channels[3].lfsr.shift_register
        assert 0 < reg < (1 << 15)
        seen.add(reg)
    assert len(seen) > 1


def test_sample_rate(rig):
    apu, _, _, _, samples = rig
    per_sample = AUDIO_CYCLES_PER_SAMPLE // AUDIO_STEP
    apu.update(per_sample)
    assert samples == []
    apu.update(1)
    assert len(samples) == 1
    assert INT16_MIN <= samples[0] <= INT16_MAX