"""
CHIP-8 Assembler
=================
Translates assembly text into a raw CHIP-8 ROM image.

Supports:
  - Labels (terminated with ':')
  - The full CHIP-8 instruction set in the conventional mnemonics
    (CLS, RET, JP, CALL, SE, SNE, LD, ADD, OR, AND, XOR, SUB, SHR,
    SUBN, SHL, RND, DRW, SKP, SKNP)
  - Immediate literals (decimal, hex with 0x prefix, binary with 0b)
  - Comments (';' to end of line)
  - .org, .db, .dw directives (.dw is big-endian, like opcodes)

Usage:
  from asm import assemble
  rom = assemble(source_text)      # origin defaults to 0x200
"""

from __future__ import annotations

from chip8 import PROGRAM_START

# ---------------------------------------------------------------------------
#  Register-register ALU ops (family 0x8, low nibble)
# ---------------------------------------------------------------------------
ALU_SUB = {
    "or":   0x1, "and":  0x2, "xor": 0x3,
    "sub":  0x5, "shr":  0x6, "subn": 0x7, "shl": 0xE,
}

# LD forms keyed on the "special" operand
_LD_FROM_VX = {          # LD <special>, Vx
    "dt":  0x15,
    "st":  0x18,
    "f":   0x29,
    "b":   0x33,
    "[i]": 0x55,
}
_LD_INTO_VX = {          # LD Vx, <special>
    "dt":  0x07,
    "k":   0x0A,
    "[i]": 0x65,
}

# ---------------------------------------------------------------------------
#  Parser helpers
# ---------------------------------------------------------------------------

def _is_reg(tok: str) -> bool:
    tok = tok.strip().lower()
    return (len(tok) == 2 and tok[0] == "v"
            and tok[1] in "0123456789abcdef")


def _parse_reg(tok: str) -> int:
    """Parse 'V0'-'VF' (any case). Returns register index."""
    if not _is_reg(tok):
        raise ValueError(f"Invalid register: {tok!r}")
    return int(tok.strip()[1], 16)


def _parse_imm(tok: str) -> int:
    """Parse an immediate value (decimal, 0x hex or 0b binary)."""
    return int(tok.strip(), 0)


def _split_ops(rest: str) -> list[str]:
    """Split operand string by comma, trimming whitespace."""
    return [s.strip() for s in rest.split(",") if s.strip()]


def _split_mnemonic(text: str) -> tuple[str, str]:
    """Split 'MNEM operands' into (mnem, operands_str)."""
    parts = text.split(None, 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]

# ---------------------------------------------------------------------------
#  Assembler
# ---------------------------------------------------------------------------

class AsmError(Exception):
    def __init__(self, line: int, msg: str):
        self.line = line
        super().__init__(f"Line {line}: {msg}")


def assemble(source: str, base_addr: int = PROGRAM_START,
             listing: bool = False) -> bytearray:
    """
    Two-pass assembler.
    Pass 1: collect labels, compute addresses.
    Pass 2: emit bytes with resolved addresses.
    The returned image starts at *base_addr* (ready for Chip8.load).
    If listing=True, print an address/hex/source listing to stdout.
    """
    cleaned: list[tuple[int, str]] = []
    for i, raw in enumerate(source.split("\n"), 1):
        stripped = raw.split(";", 1)[0].strip()
        if stripped:
            cleaned.append((i, stripped))

    # ---- Pass 1: label collection and size computation ----
    labels: dict[str, int] = {}
    sizes: list[tuple[int, str, int]] = []  # (line_no, text, size_bytes)
    pc = base_addr

    for lineno, text in cleaned:
        # A label may share its line with an instruction
        if ":" in text:
            lbl, text = text.split(":", 1)
            lbl = lbl.strip()
            if lbl in labels:
                raise AsmError(lineno, f"Duplicate label: {lbl}")
            labels[lbl] = pc
            text = text.strip()
            if not text:
                continue

        lower = text.lower()
        if lower.startswith(".org"):
            try:
                target = _parse_imm(text[4:])
            except ValueError:
                raise AsmError(lineno,
                               f"Bad .org address: {text[4:].strip()!r}")
            if not 0 <= target <= 0xFFF:
                raise AsmError(lineno, f".org {target:#x} out of range")
            if target < pc:
                raise AsmError(lineno, f".org {target:#x} moves backwards")
            sizes.append((lineno, text, target - pc))
            pc = target
            continue
        if lower.startswith(".db"):
            n = len(_split_ops(text[3:]))
            sizes.append((lineno, text, n))
            pc += n
            continue
        if lower.startswith(".dw"):
            n = len(_split_ops(text[3:])) * 2
            sizes.append((lineno, text, n))
            pc += n
            continue

        sizes.append((lineno, text, 2))
        pc += 2

    # ---- Pass 2: emit bytes ----
    code = bytearray()
    pc = base_addr
    listing_lines = []  # (addr, hex_bytes, source_text)

    for lineno, text, sz in sizes:
        lower = text.lower()
        if lower.startswith(".org"):
            code.extend(bytes(sz))
            pc += sz
            if listing:
                listing_lines.append((pc - sz, "", text))
            continue

        if lower.startswith(".db"):
            emitted = bytearray(
                _byte(tok, labels, lineno) for tok in _split_ops(text[3:]))
        elif lower.startswith(".dw"):
            emitted = bytearray()
            for tok in _split_ops(text[3:]):
                v = _resolve(tok, labels, lineno)
                if not 0 <= v <= 0xFFFF:
                    raise AsmError(lineno, f"Word value {v} out of range")
                emitted += bytes([v >> 8, v & 0xFF])
        else:
            word = _emit_instruction(lineno, text, labels)
            emitted = bytearray([word >> 8, word & 0xFF])

        if listing:
            hexstr = " ".join(f"{b:02X}" for b in emitted[:8])
            if len(emitted) > 8:
                hexstr += " ..."
            listing_lines.append((pc, hexstr, text))
        code.extend(emitted)
        pc += sz

    if listing:
        addr_labels: dict[int, list[str]] = {}
        for lbl, addr in labels.items():
            addr_labels.setdefault(addr, []).append(lbl)
        for addr, hexstr, src in listing_lines:
            for lbl in addr_labels.pop(addr, []):
                print(f"                    {lbl}:")
            print(f"  {addr:04X}  {hexstr:<24s}  {src}")

    return code

# ---------------------------------------------------------------------------
#  Instruction emission (pass 2)
# ---------------------------------------------------------------------------

def _resolve(tok: str, labels: dict[str, int], lineno: int) -> int:
    """Resolve a token that is either an immediate or a label reference."""
    tok = tok.strip()
    if tok in labels:
        return labels[tok]
    try:
        return _parse_imm(tok)
    except ValueError:
        raise AsmError(lineno, f"Undefined label or bad literal: {tok!r}")


def _addr(tok: str, labels: dict[str, int], lineno: int) -> int:
    val = _resolve(tok, labels, lineno)
    if not 0 <= val <= 0xFFF:
        raise AsmError(lineno, f"Address {val:#x} out of range")
    return val


def _byte(tok: str, labels: dict[str, int], lineno: int) -> int:
    val = _resolve(tok, labels, lineno)
    if not -128 <= val <= 0xFF:
        raise AsmError(lineno, f"Byte immediate {val} out of range")
    return val & 0xFF


def _emit_instruction(lineno: int, text: str,
                      labels: dict[str, int]) -> int:
    """Return the 16-bit opcode for one instruction."""
    mnem, rest = _split_mnemonic(text)
    m = mnem.lower()
    ops = _split_ops(rest)
    lops = [o.lower() for o in ops]

    def need(count: int):
        if len(ops) != count:
            raise AsmError(lineno, f"{mnem.upper()} takes {count} operand(s), "
                                   f"got {len(ops)}")

    def reg(idx: int) -> int:
        try:
            return _parse_reg(ops[idx])
        except ValueError as e:
            raise AsmError(lineno, str(e))

    if m == "cls":
        need(0)
        return 0x00E0
    if m == "ret":
        need(0)
        return 0x00EE

    if m == "jp":
        if len(ops) == 2 and lops[0] == "v0":
            return 0xB000 | _addr(ops[1], labels, lineno)
        need(1)
        return 0x1000 | _addr(ops[0], labels, lineno)
    if m == "call":
        need(1)
        return 0x2000 | _addr(ops[0], labels, lineno)

    if m in ("se", "sne"):
        need(2)
        x = reg(0)
        if _is_reg(ops[1]):
            fam = 0x5000 if m == "se" else 0x9000
            return fam | (x << 8) | (reg(1) << 4)
        fam = 0x3000 if m == "se" else 0x4000
        return fam | (x << 8) | _byte(ops[1], labels, lineno)

    if m == "ld":
        need(2)
        dst, src = lops
        if dst == "i":
            return 0xA000 | _addr(ops[1], labels, lineno)
        if dst in _LD_FROM_VX:
            return 0xF000 | (reg(1) << 8) | _LD_FROM_VX[dst]
        x = reg(0)
        if src in _LD_INTO_VX:
            return 0xF000 | (x << 8) | _LD_INTO_VX[src]
        if _is_reg(src):
            return 0x8000 | (x << 8) | (reg(1) << 4)
        return 0x6000 | (x << 8) | _byte(ops[1], labels, lineno)

    if m == "add":
        need(2)
        if lops[0] == "i":
            return 0xF01E | (reg(1) << 8)
        x = reg(0)
        if _is_reg(ops[1]):
            return 0x8004 | (x << 8) | (reg(1) << 4)
        return 0x7000 | (x << 8) | _byte(ops[1], labels, lineno)

    if m in ALU_SUB:
        # SHR/SHL accept a single register operand (Vy defaults to 0)
        if m in ("shr", "shl") and len(ops) == 1:
            return 0x8000 | (reg(0) << 8) | ALU_SUB[m]
        need(2)
        return 0x8000 | (reg(0) << 8) | (reg(1) << 4) | ALU_SUB[m]

    if m == "rnd":
        need(2)
        return 0xC000 | (reg(0) << 8) | _byte(ops[1], labels, lineno)

    if m == "drw":
        need(3)
        n = _resolve(ops[2], labels, lineno)
        if not 0 <= n <= 0xF:
            raise AsmError(lineno, f"Sprite height {n} out of range")
        return 0xD000 | (reg(0) << 8) | (reg(1) << 4) | n

    if m == "skp":
        need(1)
        return 0xE09E | (reg(0) << 8)
    if m == "sknp":
        need(1)
        return 0xE0A1 | (reg(0) << 8)

    raise AsmError(lineno, f"Unknown mnemonic: {mnem!r}")
