from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from accumulator_bench.flamegraph.errors import NoSamplesWarning, RenderError
from accumulator_bench.flamegraph.model import FoldedStack
from accumulator_bench.flamegraph.render import (
    RenderOptions,
    build_frame_tree,
    layout_frames,
    render_svg,
    write_flamegraph,
)

SVG_NS = "{http://www.w3.org/2000/svg}"

HASH_BENCH = [
    FoldedStack(("main", "hash", "sha256"), 3),
    FoldedStack(("main", "hash", "blake2"), 2),
]


def _rect_widths(svg: str) -> dict[str, list[float]]:
    root = ET.fromstring(svg)
    out: dict[str, list[float]] = {}
    for g in root.iter(f"{SVG_NS}g"):
        rect = g.find(f"{SVG_NS}rect")
        assert rect is not None
        out.setdefault(g.attrib["data-name"], []).append(float(rect.attrib["width"]))
    return out


def test_frame_tree_aggregates_prefixes() -> None:
    root = build_frame_tree(HASH_BENCH)
    assert root.samples == 5
    hash_node = root.children["main"].children["hash"]
    assert hash_node.samples == 5
    assert {k: v.samples for k, v in hash_node.children.items()} == {"sha256": 3, "blake2": 2}
    assert root.max_depth() == 3


def test_layout_widths_are_proportional_to_samples() -> None:
    rects = layout_frames(build_frame_tree(HASH_BENCH), width=1200, margin=10)
    by_name = {r.name: r for r in rects}
    assert by_name["all"].width == pytest.approx(1180.0)
    assert by_name["main"].width == pytest.approx(1180.0)
    assert by_name["sha256"].width == pytest.approx(1180.0 * 3 / 5)
    assert by_name["blake2"].width == pytest.approx(1180.0 * 2 / 5)
    assert by_name["sha256"].depth == by_name["blake2"].depth == 3
    # Siblings are laid out in name order and tile their parent.
    assert by_name["blake2"].x == pytest.approx(10.0)
    assert by_name["sha256"].x == pytest.approx(10.0 + 1180.0 * 2 / 5)


def test_layout_merges_duplicate_folded_lines() -> None:
    dup = [FoldedStack(("main", "a"), 1), FoldedStack(("main", "a"), 2), FoldedStack(("main", "b"), 3)]
    rects = layout_frames(build_frame_tree(dup), width=610, margin=5)
    widths = {r.name: r.width for r in rects}
    assert widths["a"] == pytest.approx(widths["b"])


def test_scenario_svg_has_two_leaf_rects_in_ratio() -> None:
    svg = render_svg(HASH_BENCH, title="hash_bench", width=1200)
    widths = _rect_widths(svg)
    assert len(widths["sha256"]) == 1
    assert len(widths["blake2"]) == 1
    assert widths["sha256"][0] / widths["blake2"][0] == pytest.approx(1.5, rel=1e-3)
    assert "5 samples" in svg


def test_render_is_deterministic() -> None:
    assert render_svg(HASH_BENCH, title="t") == render_svg(list(HASH_BENCH), title="t")


def test_render_escapes_frame_names() -> None:
    stacks = [FoldedStack(("main", "<Vec<T> as Drop>::drop & co"), 4)]
    svg = render_svg(stacks, title="a<b")
    root = ET.fromstring(svg)
    names = {g.attrib["data-name"] for g in root.iter(f"{SVG_NS}g")}
    assert "<Vec<T> as Drop>::drop & co" in names


def test_render_refuses_empty_input(tmp_path: Path) -> None:
    with pytest.raises(NoSamplesWarning):
        render_svg([])
    out = tmp_path / "empty.svg"
    with pytest.raises(NoSamplesWarning):
        write_flamegraph([], out, RenderOptions())
    assert not out.exists()


def test_write_flamegraph_builtin(tmp_path: Path) -> None:
    out = tmp_path / "hash_bench.svg"
    write_flamegraph(HASH_BENCH, out, RenderOptions(title="hash_bench"))
    assert out.read_text().startswith("<?xml")


def test_external_renderer_receives_folded_lines(tmp_path: Path, write_tool) -> None:
    captured = tmp_path / "stdin.txt"
    write_tool(
        "fake-flamegraph.pl",
        f'cat > "{captured}"\necho \'<svg xmlns="http://www.w3.org/2000/svg"></svg>\'\n',
    )
    out = tmp_path / "ext.svg"
    write_flamegraph(HASH_BENCH, out, RenderOptions(renderer="flamegraph.pl", flamegraph_cmd="fake-flamegraph.pl"))
    assert captured.read_text() == "main;hash;sha256 3\nmain;hash;blake2 2\n"
    assert "<svg" in out.read_text()


def test_external_renderer_failure_is_reported(tmp_path: Path, write_tool) -> None:
    write_tool("broken-flamegraph.pl", "echo 'ERROR: No stack counts found' >&2\nexit 2\n")
    out = tmp_path / "ext.svg"
    with pytest.raises(RenderError, match="No stack counts found"):
        write_flamegraph(HASH_BENCH, out, RenderOptions(renderer="flamegraph.pl", flamegraph_cmd="broken-flamegraph.pl"))
    assert not out.exists()


def test_external_renderer_missing(tmp_path: Path) -> None:
    with pytest.raises(RenderError, match="not found"):
        write_flamegraph(
            HASH_BENCH,
            tmp_path / "x.svg",
            RenderOptions(renderer="flamegraph.pl", flamegraph_cmd="definitely-not-installed-flamegraph.pl"),
        )
