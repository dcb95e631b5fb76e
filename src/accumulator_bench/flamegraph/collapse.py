"""
Fold dtrace `ustack()` aggregations into single-line stacks.

dtrace prints each aggregation entry as a block of frame lines, leaf first, followed
by a line holding only the sample count:

              bench`sha256::compress+0x1f
              bench`hash_bench::main+0x34
              3

Each block becomes `main;...;leaf count` (root first), the format consumed by
flame graph renderers. Frame cleanup follows the conventions of the classic
`stackcollapse.pl`: offsets, C++ argument lists and Rust symbol hashes are dropped
so samples from different instruction addresses in one function fold together.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from pathlib import Path

from .artifacts import write_text_atomic
from .model import FoldedStack

_COUNT_RE = re.compile(r"^\s*(\d+)\s*$")
_OFFSET_RE = re.compile(r"\+[^+]*$")
_CPP_ARGS_RE = re.compile(r"^([^(]*::[^(]*)\(.*\)$")
_RUST_HASH_RE = re.compile(r"::h[0-9a-f]{16}$")
_HEADER_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*CPU\s+ID\s+FUNCTION:NAME\s*$"),
    re.compile(r"^\s*\d+\s+\d+\s+\S*:\S+\s*$"),
    re.compile(r"^\s*dtrace:"),
)


def normalize_frame(raw: str) -> str:
    frame = raw.strip()
    frame = _OFFSET_RE.sub("", frame)
    frame = _CPP_ARGS_RE.sub(r"\1", frame)
    frame = _RUST_HASH_RE.sub("", frame)
    # `;` separates frames in the folded format.
    frame = frame.replace(";", ":")
    return frame or "-"


def _is_header(line: str) -> bool:
    return any(r.match(line) for r in _HEADER_RES)


def parse_dtrace_stacks(lines: Iterable[str]) -> Iterator[tuple[tuple[str, ...], int]]:
    """Yield `(frames root->leaf, count)` for every aggregation block."""
    leaf_first: list[str] = []
    for line in lines:
        line = line.rstrip("\n")
        if not line.strip():
            continue
        m = _COUNT_RE.match(line)
        if m:
            count = int(m.group(1))
            if leaf_first and count > 0:
                yield tuple(reversed(leaf_first)), count
            leaf_first = []
            continue
        if not leaf_first and _is_header(line):
            continue
        leaf_first.append(normalize_frame(line))


def fold_records(records: Iterable[tuple[tuple[str, ...], int]]) -> list[FoldedStack]:
    """Aggregate raw records into one FoldedStack per unique call path.

    Output order is the order in which each path was first observed.
    """
    counts: dict[tuple[str, ...], int] = {}
    for frames, count in records:
        counts[frames] = counts.get(frames, 0) + count
    return [FoldedStack(frames=frames, count=count) for frames, count in counts.items()]


def collapse_stacks(lines: Iterable[str]) -> list[FoldedStack]:
    return fold_records(parse_dtrace_stacks(lines))


def read_raw_records(path: Path) -> list[tuple[tuple[str, ...], int]]:
    with path.open(encoding="utf-8", errors="replace") as f:
        return list(parse_dtrace_stacks(f))


def expand_folded(stacks: Iterable[FoldedStack]) -> dict[tuple[str, ...], int]:
    """Map each unique call path to its total count (duplicates are summed)."""
    out: dict[tuple[str, ...], int] = {}
    for s in stacks:
        out[s.frames] = out.get(s.frames, 0) + s.count
    return out


def total_samples(stacks: Iterable[FoldedStack]) -> int:
    return sum(s.count for s in stacks)


def format_folded(stacks: Iterable[FoldedStack]) -> str:
    return "".join(f"{s.to_line()}\n" for s in stacks)


def parse_folded(lines: Iterable[str]) -> list[FoldedStack]:
    out: list[FoldedStack] = []
    for line in lines:
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        out.append(FoldedStack.from_line(line))
    return out


def read_folded(path: Path) -> list[FoldedStack]:
    with path.open(encoding="utf-8") as f:
        return parse_folded(f)


def write_folded(path: Path, stacks: Iterable[FoldedStack]) -> None:
    write_text_atomic(path, format_folded(stacks))
