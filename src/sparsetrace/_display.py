"""Text rendering of sparsity and colored patterns.

Small patterns are drawn with one glyph per entry.
Large ones are downsampled onto a braille grid.

Adapted from SparseArrays.jl (MIT license)
Copyright (c) 2018-2024 SparseArrays.jl contributors:
https://github.com/JuliaSparse/SparseArrays.jl/contributors
https://github.com/JuliaSparse/SparseArrays.jl/
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from sparsetrace.pattern import ColoredPattern, SparsityPattern

_MAX_DOT_ROWS = 16
_MAX_DOT_COLS = 40
_BRAILLE_ROWS = 20
_BRAILLE_COLS = 40

# Bit of the braille dot at (row % 4, col % 2) within one character.
_BRAILLE_BITS = np.array([[0x01, 0x08], [0x02, 0x10], [0x04, 0x20], [0x40, 0x80]])


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def sparsity_repr(pattern: SparsityPattern) -> str:
    return f"SparsityPattern(shape={pattern.shape}, nnz={pattern.nnz})"


def sparsity_str(pattern: SparsityPattern) -> str:
    header = (
        f"SparsityPattern({pattern.m}×{pattern.n}, "
        f"nnz={pattern.nnz}, sparsity={1 - pattern.density:.1%})"
    )
    return f"{header}\n{render(pattern)}"


def colored_repr(colored: ColoredPattern) -> str:
    sp = colored.sparsity
    return (
        f"ColoredPattern({sp.m}×{sp.n}, nnz={sp.nnz}, "
        f"sparsity={1 - sp.density:.1%}, {colored.mode}, "
        f"{_plural(colored.num_colors, 'color')})"
    )


def colored_str(colored: ColoredPattern) -> str:
    """Summary of AD savings followed by the pattern and its compression.

    Column compression is drawn side by side with ``→``,
    row compression stacked with ``↓``.
    """
    m, n = colored.sparsity.shape
    if colored.mode == "HVP":
        instead = _plural(n, "HVP")
    else:
        instead = f"{_plural(m, 'VJP')} or {_plural(n, 'JVP')}"
    summary = f"  {_plural(colored.num_colors, colored.mode)} (instead of {instead})"

    original = render(colored.sparsity).split("\n")
    compressed = render(compressed_pattern(colored)).split("\n")
    if colored.compresses_columns:
        body = _side_by_side(original, compressed)
    else:
        body = _stacked(original, compressed)
    return f"{colored_repr(colored)}\n{summary}\n{body}"


def compressed_pattern(colored: ColoredPattern) -> SparsityPattern:
    """Pattern of the compressed matrix that one AD product per color fills.

    Columns compress ``(m, n) → (m, num_colors)``,
    rows compress ``(m, n) → (num_colors, n)``.
    """
    sp = colored.sparsity
    if colored.compresses_columns:
        dense = np.zeros((sp.m, colored.num_colors), dtype=np.int8)
        dense[sp.rows, colored.colors[sp.cols]] = 1
    else:
        dense = np.zeros((colored.num_colors, sp.n), dtype=np.int8)
        dense[colored.colors[sp.rows], sp.cols] = 1
    return type(sp).from_dense(dense)


def render(pattern: SparsityPattern) -> str:
    """Draw a pattern without header."""
    if pattern.m == 0 or pattern.n == 0:
        return "(empty)"
    if pattern.m <= _MAX_DOT_ROWS and pattern.n <= _MAX_DOT_COLS:
        return _render_dots(pattern)
    return _render_braille(pattern)


def _render_dots(pattern: SparsityPattern) -> str:
    glyphs = np.where(pattern.todense() > 0, "●", "⋅")
    return "\n".join(" ".join(row) for row in glyphs)


def _render_braille(pattern: SparsityPattern) -> str:
    """Map every nonzero linearly onto a grid of 4×2-dot braille characters."""
    height = min(pattern.m, _BRAILLE_ROWS * 4)
    width = min(pattern.n, _BRAILLE_COLS * 2)
    grid = np.zeros(((height - 1) // 4 + 1, (width - 1) // 2 + 1), dtype=np.int64)

    r = np.rint(pattern.rows * (height - 1) / max(pattern.m - 1, 1)).astype(np.intp)
    c = np.rint(pattern.cols * (width - 1) / max(pattern.n - 1, 1)).astype(np.intp)
    np.bitwise_or.at(grid, (r // 4, c // 2), _BRAILLE_BITS[r % 4, c % 2])

    lines = ["".join(chr(0x2800 + int(b)) for b in row) for row in grid]
    if len(lines) == 1:
        return f"[{lines[0]}]"
    edges = ["⎡", *["⎢"] * (len(lines) - 2), "⎣"]
    closes = ["⎤", *["⎥"] * (len(lines) - 2), "⎦"]
    return "\n".join(f"{a}{line}{b}" for a, line, b in zip(edges, lines, closes))


def _side_by_side(left: list[str], right: list[str]) -> str:
    width = max(len(line) for line in left)
    height = max(len(left), len(right))
    left = left + [""] * (height - len(left))
    right = right + [""] * (height - len(right))
    return "\n".join(
        f"{a:<{width}}{' → ' if k == height // 2 else '   '}{b}".rstrip()
        for k, (a, b) in enumerate(zip(left, right))
    )


def _stacked(top: list[str], bottom: list[str]) -> str:
    width = max(len(line) for line in top + bottom)
    return "\n".join([*top, " " * (width // 2) + "↓", *bottom])
