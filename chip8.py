"""
CHIP-8 Virtual Machine
=======================
A cycle-step interpreter for the CHIP-8 instruction set: 4 KiB of memory,
sixteen 8-bit V registers, a 16-bit index register, a 16-level call stack,
two 60 Hz countdown timers, a 64x32 monochrome framebuffer and a 16-key
hex keypad.

Every instruction is two bytes, fetched big-endian from memory at PC.  The
decode loop switches on the high nibble and hands the word to exactly one
family executor; no family ever runs into the next.

The core has no clock of its own.  A host calls step() at the instruction
rate and tick_timers() at 60 Hz, and reads gfx / draw_flag to render.
"""

from __future__ import annotations
import random
from typing import Callable, Optional

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE      = 4096
PROGRAM_START = 0x200
MAX_ROM_SIZE  = MEM_SIZE - PROGRAM_START   # 3584 bytes
ADDR_MASK     = 0xFFF
MASK16        = 0xFFFF

NUM_REGS      = 16
STACK_DEPTH   = 16
NUM_KEYS      = 16

SCREEN_W      = 64
SCREEN_H      = 32
SCREEN_PIXELS = SCREEN_W * SCREEN_H

FONT_BASE     = 0x000
FONT_GLYPH_SZ = 5

# 4x5 hex digit glyphs 0-F, one byte per row (high nibble used)
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for all emulator-generated conditions."""

    def __init__(self, message: str = "", pc: Optional[int] = None,
                 opcode: Optional[int] = None):
        self.pc = pc
        self.opcode = opcode
        self.rom: Optional[str] = None   # filled in by the host driver
        super().__init__(message)

    def __str__(self) -> str:
        msg = super().__str__()
        where = []
        if self.rom is not None:
            where.append(f"rom={self.rom!r}")
        if self.pc is not None:
            where.append(f"pc={self.pc:#05x}")
        if self.opcode is not None:
            where.append(f"opcode={self.opcode:#06x}")
        if where:
            msg += f" ({' '.join(where)})"
        return msg


class RomTooLarge(Chip8Error):
    def __init__(self, size: int):
        self.size = size
        super().__init__(f"ROM is {size} bytes, limit is {MAX_ROM_SIZE}")


class StackOverflow(Chip8Error):
    pass


class StackUnderflow(Chip8Error):
    pass


class MemoryOutOfRange(Chip8Error):
    def __init__(self, addr: int, message: str = "",
                 pc: Optional[int] = None, opcode: Optional[int] = None):
        self.addr = addr
        super().__init__(message or f"Memory access out of range @ {addr:#x}",
                         pc=pc, opcode=opcode)


class UnknownOpcode(Chip8Error):
    """Recoverable: step() counts it, reports it and skips the word."""
    pass


# ---------------------------------------------------------------------------
#  VM
# ---------------------------------------------------------------------------

class Chip8:
    """CHIP-8 interpreter state plus the fetch/decode/execute loop."""

    def __init__(self, seed: Optional[int] = None):
        self.rng = random.Random(seed)

        # Callbacks
        self.on_beep: Optional[Callable[[], None]] = None
        self.on_unknown_opcode: Optional[Callable[[int, int], None]] = None

        self.reset()

    # -- Reset / load --

    def reset(self):
        """Zero every field, re-seed the font and point PC at 0x200."""
        self.mem = bytearray(MEM_SIZE)
        self.mem[FONT_BASE:FONT_BASE + len(FONTSET)] = FONTSET

        self.v: list[int] = [0] * NUM_REGS
        self.i_reg: int = 0
        self.pc: int = PROGRAM_START

        self.stack: list[int] = [0] * STACK_DEPTH
        self.sp: int = 0

        self.delay_timer: int = 0
        self.sound_timer: int = 0

        self.gfx = bytearray(SCREEN_PIXELS)
        self.keys: list[bool] = [False] * NUM_KEYS
        self.draw_flag: bool = True   # force an initial clear on the host

        # FX0A suspension
        self.waiting_for_key: bool = False
        self._release_wait: bool = False

        # Counters
        self.opcode: int = 0
        self.cycle_count: int = 0
        self.unknown_opcodes: int = 0
        self.beep_count: int = 0

    def load(self, data: bytes | bytearray):
        """Reset the machine and copy *data* into memory at 0x200."""
        self.reset()
        if len(data) > MAX_ROM_SIZE:
            raise RomTooLarge(len(data))
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data

    # -- Memory access --

    def _check_addr(self, addr: int, size: int = 1):
        if addr < 0 or addr + size > MEM_SIZE:
            raise MemoryOutOfRange(addr, pc=self.pc, opcode=self.opcode)

    @property
    def i_addr(self) -> int:
        """I as a memory address (low 12 bits)."""
        return self.i_reg & ADDR_MASK

    # -- Keypad --

    def _check_key(self, key: int):
        if not 0 <= key < NUM_KEYS:
            raise ValueError(f"Key index {key} out of range 0..{NUM_KEYS - 1}")

    def key_down(self, key: int):
        self._check_key(key)
        self.keys[key] = True

    def key_up(self, key: int):
        self._check_key(key)
        self.keys[key] = False

    def release_key_wait(self):
        """Abort a pending FX0A: the next step completes it without a key."""
        if self.waiting_for_key:
            self._release_wait = True

    # -- Fetch --

    def fetch16(self) -> int:
        """Read the big-endian word at PC.  PC is not advanced here."""
        if self.pc + 2 > MEM_SIZE:
            raise MemoryOutOfRange(
                self.pc, f"Instruction fetch past end of memory @ {self.pc:#x}",
                pc=self.pc, opcode=self.opcode)
        return (self.mem[self.pc] << 8) | self.mem[self.pc + 1]

    # =====================================================================
    #  STEP: the core decode/execute loop
    # =====================================================================

    def step(self) -> int:
        """Execute one instruction. Returns number of cycles consumed."""
        op = self.fetch16()
        self.opcode = op
        f = (op >> 12) & 0xF

        try:
            if   f == 0x0: self._exec_sys(op)
            elif f == 0x1: self.pc = op & 0xFFF
            elif f == 0x2: self._exec_call(op)
            elif f == 0x3: self._skip_if(self.v[(op >> 8) & 0xF] == (op & 0xFF))
            elif f == 0x4: self._skip_if(self.v[(op >> 8) & 0xF] != (op & 0xFF))
            elif f == 0x5: self._exec_skip_reg(op, equal=True)
            elif f == 0x6: self._exec_ld_imm(op)
            elif f == 0x7: self._exec_add_imm(op)
            elif f == 0x8: self._exec_alu(op)
            elif f == 0x9: self._exec_skip_reg(op, equal=False)
            elif f == 0xA: self._exec_ld_i(op)
            elif f == 0xB: self.pc = (op & 0xFFF) + self.v[0]
            elif f == 0xC: self._exec_rnd(op)
            elif f == 0xD: self._exec_draw(op)
            elif f == 0xE: self._exec_key(op)
            elif f == 0xF: self._exec_misc(op)
        except UnknownOpcode:
            self.unknown_opcodes += 1
            if self.on_unknown_opcode:
                self.on_unknown_opcode(self.pc, op)
            self.pc += 2

        self.cycle_count += 1
        return 1

    def _unknown(self, op: int) -> UnknownOpcode:
        return UnknownOpcode(f"Unknown opcode {op:#06x}")

    def _skip_if(self, cond: bool):
        self.pc += 4 if cond else 2

    # =====================================================================
    #  Family executors
    # =====================================================================

    # -- 0x0: CLS / RET --
    def _exec_sys(self, op: int):
        if op == 0x00E0:
            for a in range(SCREEN_PIXELS):
                self.gfx[a] = 0
            self.draw_flag = True
            self.pc += 2
        elif op == 0x00EE:
            if self.sp == 0:
                raise StackUnderflow("Return with empty call stack",
                                     pc=self.pc, opcode=op)
            self.sp -= 1
            self.pc = self.stack[self.sp] + 2
        else:
            # 0NNN machine-code routines are not supported
            raise self._unknown(op)

    # -- 0x2: CALL NNN --
    def _exec_call(self, op: int):
        if self.sp >= STACK_DEPTH:
            raise StackOverflow(f"Call depth exceeds {STACK_DEPTH}",
                                pc=self.pc, opcode=op)
        self.stack[self.sp] = self.pc
        self.sp += 1
        self.pc = op & 0xFFF

    # -- 0x5 / 0x9: SE / SNE Vx, Vy --
    def _exec_skip_reg(self, op: int, equal: bool):
        if op & 0xF:
            raise self._unknown(op)
        same = self.v[(op >> 8) & 0xF] == self.v[(op >> 4) & 0xF]
        self._skip_if(same if equal else not same)

    # -- 0x6: LD Vx, NN --
    def _exec_ld_imm(self, op: int):
        self.v[(op >> 8) & 0xF] = op & 0xFF
        self.pc += 2

    # -- 0x7: ADD Vx, NN (no carry) --
    def _exec_add_imm(self, op: int):
        x = (op >> 8) & 0xF
        self.v[x] = (self.v[x] + (op & 0xFF)) & 0xFF
        self.pc += 2

    # -- 0x8: register ALU --
    def _exec_alu(self, op: int):
        x = (op >> 8) & 0xF
        y = (op >> 4) & 0xF
        sub = op & 0xF
        a = self.v[x]
        b = self.v[y]
        v = self.v

        # Operands are captured first; VF is written before the result so
        # that with x == F the result wins.
        if sub == 0x0:
            v[x] = b
        elif sub == 0x1:
            v[x] = a | b
        elif sub == 0x2:
            v[x] = a & b
        elif sub == 0x3:
            v[x] = a ^ b
        elif sub == 0x4:
            total = a + b
            v[0xF] = 1 if total > 0xFF else 0
            v[x] = total & 0xFF
        elif sub == 0x5:
            v[0xF] = 0 if b > a else 1
            v[x] = (a - b) & 0xFF
        elif sub == 0x6:
            v[0xF] = a & 1
            v[x] = a >> 1
        elif sub == 0x7:
            v[0xF] = 0 if a > b else 1
            v[x] = (b - a) & 0xFF
        elif sub == 0xE:
            v[0xF] = a >> 7
            v[x] = (a << 1) & 0xFF
        else:
            raise self._unknown(op)
        self.pc += 2

    # -- 0xA: LD I, NNN --
    def _exec_ld_i(self, op: int):
        self.i_reg = op & 0xFFF
        self.pc += 2

    # -- 0xC: RND Vx, NN --
    def _exec_rnd(self, op: int):
        self.v[(op >> 8) & 0xF] = self.rng.randrange(256) & (op & 0xFF)
        self.pc += 2

    # -- 0xD: DRW Vx, Vy, N --
    def _exec_draw(self, op: int):
        x0 = self.v[(op >> 8) & 0xF] % SCREEN_W
        y0 = self.v[(op >> 4) & 0xF] % SCREEN_H
        height = op & 0xF
        base = self.i_addr
        self._check_addr(base, height)

        collision = 0
        for row in range(height):
            bits = self.mem[base + row]
            py = (y0 + row) % SCREEN_H
            for col in range(8):
                if bits & (0x80 >> col):
                    idx = ((x0 + col) % SCREEN_W) + py * SCREEN_W
                    if self.gfx[idx]:
                        collision = 1
                    self.gfx[idx] ^= 1

        self.v[0xF] = collision
        self.draw_flag = True
        self.pc += 2

    # -- 0xE: SKP / SKNP --
    def _exec_key(self, op: int):
        pressed = self.keys[self.v[(op >> 8) & 0xF] & 0xF]
        low = op & 0xFF
        if low == 0x9E:
            self._skip_if(pressed)
        elif low == 0xA1:
            self._skip_if(not pressed)
        else:
            raise self._unknown(op)

    # -- 0xF: timers, keypad wait, I arithmetic, BCD, block transfers --
    def _exec_misc(self, op: int):
        x = (op >> 8) & 0xF
        low = op & 0xFF

        if low == 0x07:
            self.v[x] = self.delay_timer
        elif low == 0x0A:
            if not self._wait_key(x):
                return   # PC stays on FX0A; the host keeps stepping
        elif low == 0x15:
            self.delay_timer = self.v[x]
        elif low == 0x18:
            self.sound_timer = self.v[x]
        elif low == 0x1E:
            self.i_reg = (self.i_reg + self.v[x]) & MASK16
        elif low == 0x29:
            self.i_reg = FONT_BASE + self.v[x] * FONT_GLYPH_SZ
        elif low == 0x33:
            base = self.i_addr
            self._check_addr(base, 3)
            val = self.v[x]
            self.mem[base]     = val // 100
            self.mem[base + 1] = (val // 10) % 10
            self.mem[base + 2] = val % 10
        elif low == 0x55:
            base = self.i_addr
            self._check_addr(base, x + 1)
            for r in range(x + 1):
                self.mem[base + r] = self.v[r]
        elif low == 0x65:
            base = self.i_addr
            self._check_addr(base, x + 1)
            for r in range(x + 1):
                self.v[r] = self.mem[base + r]
        else:
            raise self._unknown(op)
        self.pc += 2

    def _wait_key(self, x: int) -> bool:
        """FX0A poll. True once the wait is over (key or release request)."""
        if self._release_wait:
            self._release_wait = False
            self.waiting_for_key = False
            return True
        for k in range(NUM_KEYS):
            if self.keys[k]:
                self.v[x] = k
                self.waiting_for_key = False
                return True
        self.waiting_for_key = True
        return False

    # =====================================================================
    #  Timers
    # =====================================================================

    def tick_timers(self) -> bool:
        """One 60 Hz tick.  Returns True if the tone event fired."""
        if self.delay_timer > 0:
            self.delay_timer -= 1

        beep = False
        if self.sound_timer > 0:
            self.sound_timer -= 1
            if self.sound_timer == 0:
                beep = True
                self.beep_count += 1
                if self.on_beep:
                    self.on_beep()
        return beep

    # -- Run loop --

    def run(self, max_steps: int = 1_000_000) -> int:
        """Step until a key wait suspends the program or max_steps."""
        total = 0
        for _ in range(max_steps):
            total += self.step()
            if self.waiting_for_key:
                break
        return total

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"V{r:X}={self.v[r]:#04x}" for r in range(row, row + 4)))
        lines.append(f"  I={self.i_reg:#06x}  PC={self.pc:#05x}  "
                     f"SP={self.sp}  OP={self.opcode:#06x}")
        lines.append(f"  DT={self.delay_timer}  ST={self.sound_timer}  "
                     f"keys={''.join('1' if k else '.' for k in self.keys)}")
        if self.sp:
            lines.append("  stack: " + " ".join(
                f"{a:#05x}" for a in self.stack[:self.sp]))
        return "\n".join(lines)
