"""
CHIP-8 Display Frontend
========================
Renders the VM framebuffer in a pygame window, feeds the keyboard into
the hex keypad and plays a short square-wave tone when the sound timer
expires.

The window loop is also the run loop: each iteration polls events, runs
one frame on the system (N steps + one timer tick) and redraws if the
draw flag is set.  Everything happens on the calling thread, so the VM
keeps a single owner.

Usage (programmatic):
    from display import Chip8Display
    disp = Chip8Display(system, scale=10)
    disp.run()          # returns when the window is closed

Usage (CLI):
    python cli.py roms/PONG --scale 12
"""

from __future__ import annotations

from array import array
from typing import TYPE_CHECKING

from chip8 import SCREEN_W, SCREEN_H

if TYPE_CHECKING:
    from system import Chip8System

# QWERTY layout        CHIP-8 keypad
#   1 2 3 4              1 2 3 C
#   Q W E R              4 5 6 D
#   A S D F              7 8 9 E
#   Z X C V              A 0 B F
KEY_MAP = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}

FG_COLOR = (224, 240, 224)
BG_COLOR = (16, 24, 16)

TONE_HZ = 440
SAMPLE_RATE = 44100


def square_wave(freq: int = TONE_HZ, rate: int = SAMPLE_RATE,
                amplitude: int = 2 ** 14) -> array:
    """One period of a signed 16-bit square wave."""
    period = max(2, round(rate / freq))
    return array("h", [amplitude if t < period // 2 else -amplitude
                       for t in range(period)])


def render_ascii(gfx: bytes | bytearray, on: str = "#", off: str = ".") -> str:
    """Text rendering of a 64x32 framebuffer, one line per row."""
    return "\n".join(
        "".join(on if gfx[x + y * SCREEN_W] else off for x in range(SCREEN_W))
        for y in range(SCREEN_H))


class Chip8Display:
    """pygame window driving a Chip8System."""

    def __init__(self, system: "Chip8System", scale: int = 10,
                 fps: int = 60, title: str = "CHIP-8"):
        self.sys = system
        self.scale = max(1, scale)
        self.fps = fps
        self.title = title
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def stop(self):
        self._running = False

    def run(self, max_frames: int | None = None):
        """Open the window and run until closed (or *max_frames*)."""
        import pygame

        pygame.mixer.pre_init(SAMPLE_RATE, -16, 1, 1024)
        pygame.init()
        pygame.display.set_caption(self.title)
        screen = pygame.display.set_mode(
            (SCREEN_W * self.scale, SCREEN_H * self.scale))
        surface = pygame.Surface((SCREEN_W, SCREEN_H))
        clock = pygame.time.Clock()

        beep = None
        if pygame.mixer.get_init():
            beep = pygame.mixer.Sound(buffer=square_wave())
            beep.set_volume(0.1)
        else:
            print("[display] audio unavailable, beeps disabled")

        cpu = self.sys.cpu
        self._running = True
        frames = 0
        try:
            while self._running:
                for event in pygame.event.get():
                    if event.type == pygame.QUIT:
                        self._running = False
                    elif event.type in (pygame.KEYDOWN, pygame.KEYUP):
                        if event.key == pygame.K_ESCAPE:
                            self._running = False
                            continue
                        key = KEY_MAP.get(pygame.key.name(event.key))
                        if key is None:
                            continue
                        if event.type == pygame.KEYDOWN:
                            self.sys.press(key)
                        else:
                            self.sys.release(key)
                if not self._running:
                    break

                beeps_before = cpu.beep_count
                self.sys.run_frame()
                if beep is not None and cpu.beep_count != beeps_before:
                    beep.play(loops=-1, maxtime=100)

                gfx = self.sys.consume_frame()
                if gfx is not None:
                    self._render(pygame, surface, gfx)
                    pygame.transform.scale(surface, screen.get_size(), screen)
                    pygame.display.flip()

                frames += 1
                if max_frames is not None and frames >= max_frames:
                    break
                clock.tick(self.fps)
        finally:
            self._running = False
            pygame.quit()

    def _render(self, pygame, surface, gfx: bytes):
        surface.fill(BG_COLOR)
        for y in range(SCREEN_H):
            row = y * SCREEN_W
            for x in range(SCREEN_W):
                if gfx[row + x]:
                    surface.set_at((x, y), FG_COLOR)


class HeadlessDisplay:
    """No-window frontend: runs frames and records framebuffer snapshots."""

    def __init__(self, system: "Chip8System", verbose: bool = False):
        self.sys = system
        self.verbose = verbose
        self.snapshots: list[bytes] = []

    def run(self, frames: int) -> int:
        """Run *frames* frames, capturing every changed framebuffer."""
        cpu = self.sys.cpu
        for _ in range(frames):
            beeps_before = cpu.beep_count
            self.sys.run_frame()
            if self.verbose and cpu.beep_count != beeps_before:
                print("BEEP!")
            self.snapshot()
        return len(self.snapshots)

    def snapshot(self) -> bytes | None:
        """Capture the framebuffer if the draw flag is set."""
        gfx = self.sys.consume_frame()
        if gfx is not None:
            self.snapshots.append(gfx)
        return gfx

    @property
    def last_frame(self) -> bytes:
        """Most recent snapshot, or the live framebuffer if none yet."""
        if self.snapshots:
            return self.snapshots[-1]
        return bytes(self.sys.cpu.gfx)

    @property
    def running(self) -> bool:
        return False
