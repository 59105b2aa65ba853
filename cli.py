#!/usr/bin/env python3
"""
CHIP-8 Command-Line Runner
===========================
Loads a ROM and runs it in a pygame window, or headless for a fixed
number of frames.  Also assembles CHIP-8 source into a ROM image.

Usage:
  python cli.py ROM [--scale N] [--cpf N] [--seed N]
  python cli.py ROM --headless [--frames N] [--show]
  python cli.py --assemble SRC.asm OUT.ch8 [--listing]
"""

from __future__ import annotations
import argparse
import sys

from asm import assemble, AsmError
from chip8 import Chip8Error
from system import Chip8System, DEFAULT_CYCLES_PER_FRAME


def _unknown_opcode_logger(pc: int, opcode: int):
    print(f"[chip8] unknown opcode {opcode:#06x} at {pc:#05x}, skipped",
          file=sys.stderr)


def _run_headless(sys_emu: Chip8System, frames: int, show: bool) -> int:
    from display import HeadlessDisplay, render_ascii

    disp = HeadlessDisplay(sys_emu, verbose=True)
    disp.run(frames)
    print(f"[chip8] {frames} frames, {sys_emu.cpu.cycle_count} cycles, "
          f"{len(disp.snapshots)} redraws")
    if show:
        print(render_ascii(disp.last_frame))
    return 0


def _run_window(sys_emu: Chip8System, scale: int) -> int:
    try:
        from display import Chip8Display
        disp = Chip8Display(sys_emu, scale=scale,
                            title=f"CHIP-8 - {sys_emu.rom_name}")
        disp.run()
    except ImportError as e:
        print(f"[display] pygame not available: {e}", file=sys.stderr)
        print("[display] Install with: pip install pygame", file=sys.stderr)
        print("[display] or run with --headless", file=sys.stderr)
        return 1
    return 0


# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="CHIP-8 virtual machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py roms/PONG\n"
               "  python cli.py roms/PONG --scale 12 --cpf 15\n"
               "  python cli.py roms/IBM --headless --frames 120 --show\n"
               "  python cli.py --assemble demo.asm demo.ch8 --listing\n"
    )
    parser.add_argument("rom", nargs="?", default=None,
                        help="ROM image to load at 0x200")
    parser.add_argument("--scale", type=int, default=10, metavar="N",
                        help="Pixel scale factor for the window (default: 10)")
    parser.add_argument("--cpf", type=int, default=DEFAULT_CYCLES_PER_FRAME,
                        metavar="N",
                        help="Instructions per 60 Hz frame "
                             f"(default: {DEFAULT_CYCLES_PER_FRAME})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the RND instruction")
    parser.add_argument("--headless", action="store_true",
                        help="Run without a window")
    parser.add_argument("--frames", type=int, default=600, metavar="N",
                        help="Frames to run in headless mode (default: 600)")
    parser.add_argument("--show", action="store_true",
                        help="Print the final framebuffer (headless mode)")
    parser.add_argument("--assemble", nargs=2, metavar=("SRC", "OUT"),
                        help="Assemble SRC to OUT and exit")
    parser.add_argument("--listing", "-l", action="store_true",
                        help="Print assembly listing (with --assemble)")
    args = parser.parse_args(argv)

    # ---- Assemble-only mode -------------------------------------------
    if args.assemble:
        src_path, out_path = args.assemble
        try:
            with open(src_path, "r") as f:
                source = f.read()
        except OSError as e:
            print(f"[chip8] cannot read source: {e}", file=sys.stderr)
            return 1
        try:
            code = assemble(source, listing=args.listing)
        except AsmError as e:
            print(f"Assembly error: {e}", file=sys.stderr)
            return 1
        try:
            with open(out_path, "wb") as f:
                f.write(code)
        except OSError as e:
            print(f"[chip8] cannot write output: {e}", file=sys.stderr)
            return 1
        print(f"Assembled {src_path} → {out_path} ({len(code)} bytes)")
        return 0

    if args.rom is None:
        parser.error("a ROM path is required unless --assemble is given")

    try:
        sys_emu = Chip8System(cycles_per_frame=args.cpf, seed=args.seed)
    except ValueError as e:
        parser.error(str(e))
    sys_emu.cpu.on_unknown_opcode = _unknown_opcode_logger

    try:
        sys_emu.load_rom_file(args.rom)
    except OSError as e:
        print(f"[chip8] cannot read ROM: {e}", file=sys.stderr)
        return 1
    except Chip8Error as e:
        print(f"[chip8] load failed: {e}", file=sys.stderr)
        return 1

    try:
        if args.headless:
            return _run_headless(sys_emu, args.frames, args.show)
        return _run_window(sys_emu, args.scale)
    except Chip8Error as e:
        print(f"\n[chip8] halted: {e}", file=sys.stderr)
        print(sys_emu.dump_state(), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted. Goodbye.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
