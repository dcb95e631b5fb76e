from __future__ import annotations

import hashlib
import shlex
import shutil
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path
from xml.sax.saxutils import escape, quoteattr

import attrs

from .artifacts import write_text_atomic
from .collapse import format_folded
from .config import RendererName
from .errors import NoSamplesWarning, RenderError
from .model import FoldedStack, FrameRect

FRAME_HEIGHT = 16
FONT_SIZE = 12
CHAR_WIDTH = 0.59 * FONT_SIZE
MARGIN = 10
TOP_PAD = 50
BOTTOM_PAD = 30
# Rectangles narrower than this (px) are dropped, like flamegraph.pl's --minwidth.
MIN_WIDTH_PX = 0.1


@attrs.define(slots=True)
class FrameNode:
    name: str
    samples: int = 0
    children: dict[str, "FrameNode"] = attrs.field(factory=dict)

    def child(self, name: str) -> "FrameNode":
        node = self.children.get(name)
        if node is None:
            node = FrameNode(name)
            self.children[name] = node
        return node

    def max_depth(self) -> int:
        if not self.children:
            return 0
        return 1 + max(c.max_depth() for c in self.children.values())


@attrs.define(frozen=True, slots=True)
class RenderOptions:
    title: str = "Flame Graph"
    width: int = 1200
    renderer: RendererName = "builtin"
    flamegraph_cmd: str = "flamegraph.pl"


def build_frame_tree(stacks: Iterable[FoldedStack]) -> FrameNode:
    """Aggregate folded stacks into a prefix tree; the root holds the total."""
    root = FrameNode("all")
    for s in stacks:
        root.samples += s.count
        node = root
        for frame in s.frames:
            node = node.child(frame)
            node.samples += s.count
    return root


def layout_frames(root: FrameNode, *, width: int, margin: int = MARGIN) -> list[FrameRect]:
    """Compute one rectangle per distinct root->frame prefix.

    Depth 0 is the synthetic "all" frame; children are laid out left to right in
    name order, each taking a share of its parent's width proportional to samples.
    """
    rects: list[FrameRect] = []
    if root.samples == 0:
        return rects
    px_per_sample = (width - 2 * margin) / root.samples

    def visit(node: FrameNode, depth: int, x: float) -> None:
        w = node.samples * px_per_sample
        if w < MIN_WIDTH_PX:
            return
        rects.append(FrameRect(name=node.name, depth=depth, x=x, width=w, samples=node.samples))
        child_x = x
        for name in sorted(node.children):
            c = node.children[name]
            visit(c, depth + 1, child_x)
            child_x += c.samples * px_per_sample

    visit(root, 0, float(margin))
    return rects


def frame_color(name: str) -> str:
    """Warm palette keyed on the frame name, stable across runs."""
    if name == "all":
        return "rgb(200,200,200)"
    h = hashlib.sha1(name.encode("utf-8")).digest()
    r = 205 + h[0] % 50
    g = h[1] % 230
    b = h[2] % 55
    return f"rgb({r},{g},{b})"


def _label(name: str, width: float) -> str | None:
    max_chars = int((width - 6) / CHAR_WIDTH)
    if max_chars < 3:
        return None
    if len(name) <= max_chars:
        return name
    return name[: max_chars - 2] + ".."


def _svg_height(depth: int) -> int:
    return TOP_PAD + (depth + 1) * FRAME_HEIGHT + BOTTOM_PAD


def render_svg(stacks: Sequence[FoldedStack], *, title: str = "Flame Graph", width: int = 1200) -> str:
    root = build_frame_tree(stacks)
    if root.samples == 0:
        raise NoSamplesWarning("No samples to render")

    rects = layout_frames(root, width=width)
    height = _svg_height(root.max_depth())
    total = root.samples

    out: list[str] = []
    out.append('<?xml version="1.0" standalone="no"?>')
    out.append(
        f'<svg version="1.1" width="{width}" height="{height}" viewBox="0 0 {width} {height}" '
        'xmlns="http://www.w3.org/2000/svg">'
    )
    out.append('<rect x="0" y="0" width="100%" height="100%" fill="#eeeeee"/>')
    out.append(
        f'<text x="{width / 2:.1f}" y="24" font-size="17" font-family="Verdana,sans-serif" '
        f'text-anchor="middle">{escape(title)}</text>'
    )
    out.append(
        f'<text x="{width / 2:.1f}" y="42" font-size="{FONT_SIZE}" font-family="Verdana,sans-serif" '
        f'text-anchor="middle" fill="#555555">{total} samples</text>'
    )
    for r in rects:
        y = height - BOTTOM_PAD - (r.depth + 1) * FRAME_HEIGHT
        pct = 100.0 * r.samples / total
        out.append(f"<g class=\"frame\" data-name={quoteattr(r.name)}>")
        out.append(f"<title>{escape(r.name)} ({r.samples} samples, {pct:.2f}%)</title>")
        out.append(
            f'<rect x="{r.x:.2f}" y="{y}" width="{r.width:.2f}" height="{FRAME_HEIGHT - 1}" '
            f'fill="{frame_color(r.name)}" rx="2" ry="2"/>'
        )
        label = _label(r.name, r.width)
        if label is not None:
            out.append(
                f'<text x="{r.x + 3:.2f}" y="{y + FRAME_HEIGHT - 4}" font-size="{FONT_SIZE}" '
                f'font-family="Verdana,sans-serif">{escape(label)}</text>'
            )
        out.append("</g>")
    out.append("</svg>")
    return "\n".join(out) + "\n"


def _render_external(stacks: Sequence[FoldedStack], options: RenderOptions) -> str:
    argv = shlex.split(options.flamegraph_cmd)
    if not argv:
        raise RenderError("Empty flamegraph command")
    exe = shutil.which(argv[0])
    if exe is None:
        raise RenderError(f"{argv[0]} not found on PATH")
    argv = [exe, *argv[1:], "--title", options.title, "--width", str(options.width)]
    try:
        proc = subprocess.run(argv, input=format_folded(stacks).encode(), capture_output=True, check=False)
    except OSError as e:
        raise RenderError(f"Failed to launch renderer: {shlex.join(argv)}: {e}") from e
    if proc.returncode != 0:
        err = proc.stderr.decode(errors="replace").strip()
        raise RenderError(f"{Path(argv[0]).name} exited with code {proc.returncode}: {err}")
    svg = proc.stdout.decode(errors="replace")
    if "<svg" not in svg:
        raise RenderError(f"{Path(argv[0]).name} produced no SVG output")
    return svg


def write_flamegraph(stacks: Sequence[FoldedStack], out_path: Path, options: RenderOptions) -> None:
    """Render `stacks` and write the SVG to `out_path` (replacing any previous file)."""
    if not stacks:
        raise NoSamplesWarning("No folded stacks to render")
    if options.renderer == "builtin":
        svg = render_svg(stacks, title=options.title, width=options.width)
    elif options.renderer == "flamegraph.pl":
        svg = _render_external(stacks, options)
    else:
        raise RenderError(f"Unknown renderer: {options.renderer!r}")
    write_text_atomic(out_path, svg)
