"""
CHIP-8 System Driver
=====================
Wires together:
  - One Chip8 VM (chip8.py)
  - ROM loading from bytes or files
  - The fixed cycles-per-tick schedule: N instruction steps, then one
    60 Hz timer tick, per frame
  - Frame hand-off to a renderer (framebuffer + draw flag)

The driver is the single owner of the VM: every step() and timer tick
goes through it, on one thread.  Fatal VM errors are annotated with the
ROM name and re-raised so the caller can report what failed where.
"""

from __future__ import annotations
import os
from typing import Optional

from chip8 import Chip8, Chip8Error

# ---------------------------------------------------------------------------
#  Timing
# ---------------------------------------------------------------------------

TIMER_HZ = 60
DEFAULT_CYCLES_PER_FRAME = 10   # 600 instructions/s


class Chip8System:
    """A CHIP-8 machine plus the host-side run schedule."""

    def __init__(self, cycles_per_frame: int = DEFAULT_CYCLES_PER_FRAME,
                 seed: Optional[int] = None):
        if cycles_per_frame < 1:
            raise ValueError("cycles_per_frame must be >= 1")
        self.cycles_per_frame = cycles_per_frame
        self.cpu = Chip8(seed=seed)
        self.rom_name: Optional[str] = None
        self.rom_size: int = 0
        self.frame_count: int = 0

    # -----------------------------------------------------------------
    #  Loading
    # -----------------------------------------------------------------

    def load_rom(self, data: bytes | bytearray, name: str = "<bytes>"):
        """Reset the VM and load *data* at 0x200."""
        try:
            self.cpu.load(data)
        except Chip8Error as e:
            e.rom = name
            raise
        self.rom_name = name
        self.rom_size = len(data)
        self.frame_count = 0

    def load_rom_file(self, path: str):
        """Load a ROM image from disk."""
        with open(path, "rb") as f:
            data = f.read()
        self.load_rom(data, name=os.path.basename(path))
        print(f"[chip8] Loaded {len(data)} bytes from '{path}'")

    # -----------------------------------------------------------------
    #  Execution
    # -----------------------------------------------------------------

    def step(self) -> int:
        """Execute one instruction."""
        try:
            return self.cpu.step()
        except Chip8Error as e:
            e.rom = self.rom_name
            raise

    def tick(self) -> bool:
        """One 60 Hz timer tick. Returns True if a tone was requested."""
        return self.cpu.tick_timers()

    def run_frame(self) -> int:
        """Run cycles_per_frame steps, then one timer tick."""
        total = 0
        for _ in range(self.cycles_per_frame):
            total += self.step()
        self.tick()
        self.frame_count += 1
        return total

    def run(self, frames: int = 60) -> int:
        """Run *frames* frames. Returns instructions executed."""
        total = 0
        for _ in range(frames):
            total += self.run_frame()
        return total

    # -----------------------------------------------------------------
    #  Collaborator hooks
    # -----------------------------------------------------------------

    def consume_frame(self) -> Optional[bytes]:
        """Return the framebuffer if it changed since the last call."""
        if not self.cpu.draw_flag:
            return None
        self.cpu.draw_flag = False
        return bytes(self.cpu.gfx)

    def press(self, key: int):
        self.cpu.key_down(key)

    def release(self, key: int):
        self.cpu.key_up(key)

    def release_key_wait(self):
        self.cpu.release_key_wait()

    @property
    def waiting_for_key(self) -> bool:
        return self.cpu.waiting_for_key

    # -----------------------------------------------------------------
    #  Convenience
    # -----------------------------------------------------------------

    def dump_state(self) -> str:
        """Full VM state dump."""
        cpu = self.cpu
        lines = [f"=== {self.rom_name or '<no rom>'} "
                 f"({self.rom_size} bytes) ==="]
        lines.append(cpu.dump_regs())
        lines.append(f"  Cycles: {cpu.cycle_count}  Frames: {self.frame_count}  "
                     f"Unknown opcodes: {cpu.unknown_opcodes}  "
                     f"Beeps: {cpu.beep_count}")
        lines.append(f"  Waiting for key: {cpu.waiting_for_key}  "
                     f"Draw pending: {cpu.draw_flag}")
        return "\n".join(lines)
