"""Window, sound output and keyboard input, and the command that runs a ROM."""

from __future__ import annotations

import argparse
import collections
import logging
import sys
import threading
import time
from array import array
from typing import Optional, Sequence

import pygame

from .apu import SAMPLING_FREQUENCY, Joypad
from .machine import EndlessLoopError, Nes, RomError
from .opcodes import UnknownOpcodeError

_log = logging.getLogger(__name__)

SCREEN_WIDTH = 256
SCREEN_HEIGHT = 240
AUDIO_CHUNK = 512
BACKGROUND = (0, 255, 0)

# Keys in controller report order: A, B, Select, Start, Up, Down, Left, Right.
KEY_BUTTONS = {
    key: index
    for index, key in enumerate(
        (
            pygame.K_x,
            pygame.K_z,
            pygame.K_RSHIFT,
            pygame.K_RETURN,
            pygame.K_UP,
            pygame.K_DOWN,
            pygame.K_LEFT,
            pygame.K_RIGHT,
        )
    )
}


class AudioQueue:
    """Samples handed from the emulator to the audio output.

    ``enqueue`` waits while more than ``high_water`` samples are pending,
    which paces the emulation to the sound card.
    """

    def __init__(self, high_water: int = 1536) -> None:
        self.high_water = high_water
        self._samples: collections.deque[int] = collections.deque()
        self._cond = threading.Condition()
        self._closed = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._samples)

    def enqueue(self, sample: int) -> None:
        """Add a sample, waiting for room; dropped once the queue is closed."""
        with self._cond:
            self._cond.wait_for(
                lambda: self._closed or len(self._samples) <= self.high_water
            )
            if self._closed:
                return
            self._samples.append(sample)

    def dequeue(self, count: int) -> list[int]:
        """Take ``count`` samples, padding with silence on underrun."""
        with self._cond:
            taken = min(count, len(self._samples))
            samples = [self._samples.popleft() for _ in range(taken)]
            self._cond.notify_all()
        if taken < count:
            _log.warning("audio underrun")
            samples.extend([0] * (count - taken))
        return samples

    def close(self) -> None:
        """Release any waiting producer and refuse further samples."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class Shell:
    """A 256x240 window, a mono 16-bit audio stream and keyboard input."""

    def __init__(self, joypad: Joypad) -> None:
        self.joypad = joypad
        self.audio = AudioQueue()
        self._screen: Optional[pygame.Surface] = None
        self._running = False
        self._feeder: Optional[threading.Thread] = None

    def open(self) -> None:
        """Open audio and video; raises pygame.error on failure."""
        pygame.mixer.pre_init(
            frequency=SAMPLING_FREQUENCY, size=-16, channels=1, buffer=AUDIO_CHUNK
        )
        pygame.init()
        pygame.mixer.init(
            frequency=SAMPLING_FREQUENCY, size=-16, channels=1, buffer=AUDIO_CHUNK
        )
        self._running = True
        self._feeder = threading.Thread(
            target=self._feed, args=(pygame.mixer.Channel(0),), daemon=True
        )
        self._feeder.start()
        self._screen = pygame.display.set_mode((SCREEN_WIDTH, SCREEN_HEIGHT))
        pygame.display.set_caption("nesmu")

    def close(self) -> None:
        """Stop audio, close the window and shut pygame down."""
        self._running = False
        self.audio.close()
        if self._feeder is not None:
            self._feeder.join()
            self._feeder = None
        self._screen = None
        pygame.quit()

    def __enter__(self) -> "Shell":
        self.open()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _feed(self, channel: "pygame.mixer.Channel") -> None:
        while self._running:
            if channel.get_queue() is not None:
                time.sleep(0.001)
                continue
            samples = array("h", self.audio.dequeue(AUDIO_CHUNK))
            channel.queue(pygame.mixer.Sound(buffer=samples.tobytes()))

    def enqueue_sample(self, sample: int) -> None:
        """Pass one output sample to the audio stream."""
        self.audio.enqueue(sample)

    def poll_events(self) -> bool:
        """Handle one pending event; return True when the user wants to quit."""
        event = pygame.event.poll()
        if event.type == pygame.QUIT:
            return True
        if event.type not in (pygame.KEYDOWN, pygame.KEYUP):
            return False
        if event.key == pygame.K_ESCAPE:
            return True
        index = KEY_BUTTONS.get(event.key)
        if index is not None:
            self.joypad.press(index, event.type == pygame.KEYDOWN)
        return False

    def video_write(self) -> None:
        """Present a frame."""
        if self._screen is None:
            raise RuntimeError("shell is not open")
        self._screen.fill(BACKGROUND)
        pygame.display.flip()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a ROM in a window until it is closed."""
    parser = argparse.ArgumentParser(prog="nesmu")
    parser.add_argument("-d", dest="debug", action="store_true", help="trace execution")
    parser.add_argument("rom", help="iNES image to run")
    args = parser.parse_args(argv)

    try:
        with open(args.rom, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        print(f"open(): {exc}", file=sys.stderr)
        return 1

    try:
        nes = Nes(data, output=sys.stdout)
    except RomError as exc:
        print(exc, file=sys.stderr)
        return 1

    shell = Shell(nes.joypad)
    nes.apu.sink = shell.enqueue_sample
    try:
        shell.open()
    except pygame.error as exc:
        print(exc, file=sys.stderr)
        shell.close()
        return 1

    try:
        done = False
        while not done:
            if nes.step(args.debug):
                shell.video_write()
                done = shell.poll_events()
    except (UnknownOpcodeError, EndlessLoopError) as exc:
        print(exc)
        return 1
    finally:
        shell.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())