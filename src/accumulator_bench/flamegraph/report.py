from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

import attrs
from mdutils.mdutils import MdUtils  # type: ignore[import-untyped]

from .model import FoldedStack


@attrs.define(frozen=True, slots=True)
class HotFrame:
    name: str
    self_samples: int
    total_samples: int


def summarize_hot_frames(stacks: Iterable[FoldedStack], *, limit: int = 20) -> list[HotFrame]:
    """Rank frames by self samples (leaf time), then by name.

    Inclusive samples count each stack once per frame, so recursion does not
    inflate them.
    """
    self_counts: dict[str, int] = {}
    total_counts: dict[str, int] = {}
    for s in stacks:
        if not s.frames:
            continue
        leaf = s.frames[-1]
        self_counts[leaf] = self_counts.get(leaf, 0) + s.count
        for name in set(s.frames):
            total_counts[name] = total_counts.get(name, 0) + s.count

    frames = [
        HotFrame(name=name, self_samples=self_counts.get(name, 0), total_samples=total)
        for name, total in total_counts.items()
    ]
    frames.sort(key=lambda f: (-f.self_samples, -f.total_samples, f.name))
    return frames[:limit]


def _pct(part: int, whole: int) -> str:
    if whole == 0:
        return "NA"
    return f"{100.0 * part / whole:.1f}%"


def write_report(
    *,
    report_path: Path,
    bench_name: str,
    stacks: Sequence[FoldedStack],
    svg_path: Path,
    filter_desc: str,
    commands: dict[str, str],
    limit: int = 20,
) -> Path:
    """Write a Markdown summary of the hottest frames next to the flamegraph."""
    total = sum(s.count for s in stacks)
    hot = summarize_hot_frames(stacks, limit=limit)

    md = MdUtils(file_name=str(report_path.with_suffix("")), title=f"Flamegraph: {bench_name}")
    md.new_paragraph(f"Flamegraph: `{svg_path}`")
    md.new_paragraph(f"Samples: `{total}` across `{len(stacks)}` unique stacks (filter: `{filter_desc}`)")

    md.new_header(level=1, title="Commands")
    md.new_list([f"{k}: `{v}`" for k, v in sorted(commands.items()) if v])

    md.new_header(level=1, title="Hottest Frames")
    header = ["frame", "self", "self_pct", "total", "total_pct"]
    cells: list[str] = list(header)
    for f in hot:
        cells += [
            f"`{f.name}`".replace("|", "\\|"),
            str(f.self_samples),
            _pct(f.self_samples, total),
            str(f.total_samples),
            _pct(f.total_samples, total),
        ]
    md.new_table(columns=len(header), rows=len(hot) + 1, text=cells, text_align="left")
    md.create_md_file()
    return report_path
