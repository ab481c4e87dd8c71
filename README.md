# nesmu

A small NES emulator. It models the 6502 CPU (the official opcodes), the
APU's two pulse channels, triangle, noise and DMC channels together with
the frame sequencer, the mixer and frame IRQs, the first controller, and
the PPU's frame timing, vertical-blank flag and NMI.

## Installing

    pip install .

This pulls in `pygame`, which opens the window, plays the sound and reads
the keyboard.

## Running a ROM

    nesmu path/to/game.nes

Add `-d` to print one trace line per executed instruction (program
counter, mnemonic, the three bytes at PC, vblank flag, registers, PPU
scanline and dot, and cycle count):

    nesmu -d path/to/game.nes

Only mapper-0 iNES images are accepted, recognised by their size: a
16-byte header followed by 32 KiB of program ROM and 8 KiB of character
ROM, or by 16 KiB of data in total plus 8 KiB of character ROM, or by
16 KiB of data in total after the header. In the last two cases the first
16 KiB after the header is mirrored into both halves of `$8000`–`$FFFF`.
Any other size is rejected with a message and exit status 1.

Writes to `$6004`–`$60FF` are echoed to standard output, so test ROMs
that report their results there can be run directly. A `BEQ` to itself
with the zero flag set stops the run with "endless loop detected" and
exit status 1; an opcode outside the official set stops it with
"unknown instruction xx".

Sound is a mono 16-bit stream at 48 kHz. The emulator waits whenever
more than 1536 samples are pending, so the sound card paces emulation;
an audio underrun is padded with silence and logged as a warning.

### Controls

| NES button | Key         |
|------------|-------------|
| A          | X           |
| B          | Z           |
| Select     | Right Shift |
| Start      | Enter       |
| D-pad      | Arrow keys  |

Escape or closing the window quits.

## Using the pieces

The machine runs without a window. `nesmu.machine.Nes` takes the ROM
bytes, a callable that receives each signed 16-bit audio sample, and a
text stream for the `$6004` output and the trace:

```python
import io
from nesmu.machine import Nes

with open("game.nes", "rb") as fh:
    rom = fh.read()

samples = []
nes = Nes(rom, samples.append, io.StringIO())
for _ in range(10_000):
    nes.step(False)
```

`Nes.step` returns `True` when the PPU has just entered vertical blank.
`nesmu.machine.load_prg` returns the 32 KiB mapped at `$8000` for an image
and raises `RomError` for an unsupported one.

`nesmu.cpu.Cpu` takes any read and write callables, and
`nesmu.opcodes.get_instruction` with `nesmu.opcodes.execute` runs single
instructions on it. `nesmu.apu.Apu` and `nesmu.ppu.Ppu` can likewise be
driven on their own, which is handy for testing sound registers or frame
timing.

## What it does not do

- The picture is not drawn: every frame is a plain green fill. There is
  no background, sprite or palette rendering and no OAM DMA.
- Only mapper 0 is supported.
- The second controller port always reads 0.
- Unofficial opcodes and decimal mode are not emulated.

## Tests

    pip install .[test]
    pytest