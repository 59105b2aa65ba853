#!/usr/bin/env python3
"""
Integration tests for the CHIP-8 system driver, frontends and CLI.

Tests the full stack: assembler -> ROM -> system run schedule -> frame
hand-off -> headless display / pygame window / command line.
"""
import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

import pytest

from asm import assemble
from chip8 import (
    MAX_ROM_SIZE, SCREEN_PIXELS, SCREEN_W,
    Chip8Error, RomTooLarge, StackUnderflow,
)
from system import Chip8System, DEFAULT_CYCLES_PER_FRAME
from display import (
    KEY_MAP, HeadlessDisplay, Chip8Display, render_ascii, square_wave,
)
import cli


# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

# Draws the digit 0 at (0, 0), sets a 3-frame tone, then spins
DIGIT_PROG = """
    ld v0, 0
    ld f, v0
    drw v0, v0, 5
    ld v1, 3
    ld st, v1
spin:
    jp spin
"""


def make_system(source: str = DIGIT_PROG, cpf: int = DEFAULT_CYCLES_PER_FRAME,
                name: str = "test.ch8") -> Chip8System:
    sys_emu = Chip8System(cycles_per_frame=cpf, seed=0)
    sys_emu.load_rom(assemble(source), name=name)
    return sys_emu


def write_tmp(data: bytes, suffix: str = ".ch8") -> str:
    fd, path = tempfile.mkstemp(suffix=suffix)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    return path


# ---------------------------------------------------------------------------
#  System driver
# ---------------------------------------------------------------------------

class TestSystemLoad(unittest.TestCase):
    def test_load_rom_records_name(self):
        s = make_system()
        self.assertEqual(s.rom_name, "test.ch8")
        self.assertEqual(s.cpu.pc, 0x200)
        self.assertEqual(s.frame_count, 0)

    def test_oversized_rom_carries_name(self):
        s = Chip8System()
        with self.assertRaises(RomTooLarge) as ctx:
            s.load_rom(bytes(MAX_ROM_SIZE + 1), name="big.ch8")
        self.assertEqual(ctx.exception.rom, "big.ch8")
        self.assertIn("big.ch8", str(ctx.exception))

    def test_load_rom_file(self):
        path = write_tmp(bytes(assemble("ld v3, 0x33")))
        try:
            s = Chip8System()
            with redirect_stdout(io.StringIO()) as out:
                s.load_rom_file(path)
            self.assertIn("Loaded 2 bytes", out.getvalue())
            self.assertEqual(s.rom_name, os.path.basename(path))
            s.step()
            self.assertEqual(s.cpu.v[3], 0x33)
        finally:
            os.unlink(path)

    def test_missing_file(self):
        s = Chip8System()
        with self.assertRaises(OSError):
            s.load_rom_file("/nonexistent/rom.ch8")

    def test_cycles_per_frame_validated(self):
        with self.assertRaises(ValueError):
            Chip8System(cycles_per_frame=0)


class TestSystemRun(unittest.TestCase):
    def test_run_frame_schedule(self):
        s = make_system(cpf=7)
        s.cpu.delay_timer = 10
        executed = s.run_frame()
        self.assertEqual(executed, 7)
        self.assertEqual(s.cpu.cycle_count, 7)
        self.assertEqual(s.cpu.delay_timer, 9)
        self.assertEqual(s.frame_count, 1)

    def test_run_frames(self):
        s = make_system(cpf=5)
        self.assertEqual(s.run(12), 60)
        self.assertEqual(s.frame_count, 12)

    def test_tone_during_run(self):
        beeps = []
        s = make_system()
        s.cpu.on_beep = lambda: beeps.append(s.frame_count)
        s.run(10)
        # ST=3 is set in frame 0, so the tone ends on the third tick
        self.assertEqual(beeps, [2])
        self.assertEqual(s.cpu.beep_count, 1)

    def test_consume_frame(self):
        s = make_system()
        first = s.consume_frame()   # initial clear after reset
        self.assertEqual(first, bytes(SCREEN_PIXELS))
        self.assertIsNone(s.consume_frame())
        s.run_frame()
        frame = s.consume_frame()
        self.assertIsNotNone(frame)
        self.assertEqual(frame[0:4], b"\x01\x01\x01\x01")
        self.assertEqual(frame[SCREEN_W:SCREEN_W + 4], b"\x01\x00\x00\x01")
        self.assertFalse(s.cpu.draw_flag)
        self.assertIsNone(s.consume_frame())

    def test_fatal_error_annotated_with_rom(self):
        s = make_system("ret", name="broken.ch8")
        with self.assertRaises(StackUnderflow) as ctx:
            s.run_frame()
        err = ctx.exception
        self.assertEqual(err.rom, "broken.ch8")
        self.assertEqual(err.opcode, 0x00EE)
        self.assertEqual(err.pc, 0x200)
        self.assertIn("broken.ch8", str(err))
        self.assertIn("0x00ee", str(err))

    def test_key_wait_through_system(self):
        s = make_system("ld v2, k\nspin: jp spin")
        s.run(3)
        self.assertTrue(s.waiting_for_key)
        self.assertEqual(s.cpu.pc, 0x200)
        s.press(0xB)
        s.run_frame()
        self.assertFalse(s.waiting_for_key)
        self.assertEqual(s.cpu.v[2], 0xB)
        s.release(0xB)
        self.assertFalse(s.cpu.keys[0xB])

    def test_release_key_wait_through_system(self):
        s = make_system("ld v2, k\nspin: jp spin")
        s.run_frame()
        s.release_key_wait()
        s.run_frame()
        self.assertEqual(s.cpu.pc, 0x202)

    def test_dump_state(self):
        s = make_system()
        s.run(2)
        text = s.dump_state()
        self.assertIn("test.ch8", text)
        self.assertIn("Frames: 2", text)
        self.assertIn("Beeps: 0", text)


# ---------------------------------------------------------------------------
#  Frontends
# ---------------------------------------------------------------------------

class TestHeadlessDisplay(unittest.TestCase):
    def test_records_changed_frames_only(self):
        s = make_system()
        disp = HeadlessDisplay(s)
        disp.run(5)
        # Frame 0 contains the reset clear and the first draw
        self.assertEqual(len(disp.snapshots), 1)
        self.assertEqual(disp.last_frame[0], 1)

    def test_verbose_beep(self):
        s = make_system()
        disp = HeadlessDisplay(s, verbose=True)
        with redirect_stdout(io.StringIO()) as out:
            disp.run(5)
        self.assertEqual(out.getvalue().count("BEEP!"), 1)

    def test_render_ascii(self):
        s = make_system()
        s.run_frame()
        text = render_ascii(s.cpu.gfx)
        rows = text.split("\n")
        self.assertEqual(len(rows), 32)
        self.assertTrue(all(len(r) == 64 for r in rows))
        self.assertEqual(rows[0][:5], "####.")
        self.assertEqual(rows[1][:5], "#..#.")


class TestDisplayHelpers(unittest.TestCase):
    def test_key_map_covers_keypad(self):
        self.assertEqual(sorted(KEY_MAP.values()), list(range(16)))

    def test_square_wave(self):
        wave = square_wave(freq=441, rate=44100, amplitude=100)
        self.assertEqual(len(wave), 100)
        self.assertEqual(wave[0], 100)
        self.assertEqual(wave[-1], -100)


@pytest.mark.display
class TestPygameDisplay(unittest.TestCase):
    def test_window_runs_frames(self):
        s = make_system()
        disp = Chip8Display(s, scale=2, fps=1000)
        with redirect_stdout(io.StringIO()):
            disp.run(max_frames=4)
        self.assertEqual(s.frame_count, 4)
        self.assertFalse(disp.running)
        self.assertIsNone(s.consume_frame())


# ---------------------------------------------------------------------------
#  CLI
# ---------------------------------------------------------------------------

class TestCLI(unittest.TestCase):
    def test_assemble_mode(self):
        src = write_tmp(b"cls\nret\n", suffix=".asm")
        out = src + ".ch8"
        try:
            with redirect_stdout(io.StringIO()):
                rc = cli.main(["--assemble", src, out])
            self.assertEqual(rc, 0)
            with open(out, "rb") as f:
                self.assertEqual(f.read(), b"\x00\xE0\x00\xEE")
        finally:
            os.unlink(src)
            if os.path.exists(out):
                os.unlink(out)

    def test_assemble_error(self):
        src = write_tmp(b"bogus\n", suffix=".asm")
        try:
            with redirect_stderr(io.StringIO()) as err:
                rc = cli.main(["--assemble", src, src + ".out"])
            self.assertEqual(rc, 1)
            self.assertIn("Line 1", err.getvalue())
        finally:
            os.unlink(src)

    def test_assemble_missing_source(self):
        with redirect_stderr(io.StringIO()) as err:
            rc = cli.main(["--assemble", "/nonexistent/prog.asm",
                           "/nonexistent/prog.ch8"])
        self.assertEqual(rc, 1)
        self.assertIn("cannot read source", err.getvalue())

    def test_assemble_unwritable_output(self):
        src = write_tmp(b"cls\n", suffix=".asm")
        try:
            with redirect_stdout(io.StringIO()), \
                    redirect_stderr(io.StringIO()) as err:
                rc = cli.main(["--assemble", src, "/nonexistent/dir/out.ch8"])
            self.assertEqual(rc, 1)
            self.assertIn("cannot write output", err.getvalue())
        finally:
            os.unlink(src)

    def test_assemble_bad_org(self):
        src = write_tmp(b".org start\nstart: cls\n", suffix=".asm")
        try:
            with redirect_stderr(io.StringIO()) as err:
                rc = cli.main(["--assemble", src, src + ".out"])
            self.assertEqual(rc, 1)
            self.assertIn("Line 1", err.getvalue())
            self.assertFalse(os.path.exists(src + ".out"))
        finally:
            os.unlink(src)

    def test_press_out_of_range_key(self):
        s = make_system()
        with self.assertRaises(ValueError):
            s.press(16)

    def test_headless_run(self):
        path = write_tmp(bytes(assemble(DIGIT_PROG)))
        try:
            with redirect_stdout(io.StringIO()) as out:
                rc = cli.main([path, "--headless", "--frames", "5", "--show"])
            self.assertEqual(rc, 0)
            text = out.getvalue()
            self.assertIn("5 frames", text)
            self.assertIn("BEEP!", text)
            self.assertIn("####", text)
        finally:
            os.unlink(path)

    def test_headless_fatal_error(self):
        path = write_tmp(bytes(assemble("ret")))
        try:
            with redirect_stdout(io.StringIO()), \
                    redirect_stderr(io.StringIO()) as err:
                rc = cli.main([path, "--headless", "--frames", "1"])
            self.assertEqual(rc, 1)
            self.assertIn("halted", err.getvalue())
            self.assertIn(os.path.basename(path), err.getvalue())
        finally:
            os.unlink(path)

    def test_unknown_opcode_is_logged(self):
        path = write_tmp(b"\x01\x23\x12\x02")
        try:
            with redirect_stdout(io.StringIO()), \
                    redirect_stderr(io.StringIO()) as err:
                rc = cli.main([path, "--headless", "--frames", "1"])
            self.assertEqual(rc, 0)
            self.assertIn("unknown opcode 0x0123", err.getvalue())
        finally:
            os.unlink(path)

    def test_rom_too_large(self):
        path = write_tmp(bytes(MAX_ROM_SIZE + 1))
        try:
            with redirect_stderr(io.StringIO()) as err:
                rc = cli.main([path, "--headless"])
            self.assertEqual(rc, 1)
            self.assertIn("load failed", err.getvalue())
        finally:
            os.unlink(path)

    def test_missing_rom(self):
        with redirect_stderr(io.StringIO()) as err:
            rc = cli.main(["/nonexistent/rom.ch8", "--headless"])
        self.assertEqual(rc, 1)
        self.assertIn("cannot read ROM", err.getvalue())

    def test_errors_share_base(self):
        self.assertTrue(issubclass(RomTooLarge, Chip8Error))


if __name__ == "__main__":
    unittest.main()
