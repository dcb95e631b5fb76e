from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import attrs

from accumulator_bench.flamegraph import prereqs
from accumulator_bench.flamegraph.config import default_config
from accumulator_bench.flamegraph.model import PrerequisiteCheck


def test_check_cargo_project(tmp_path: Path) -> None:
    assert prereqs.check_cargo_project(tmp_path).status == "fail"
    (tmp_path / "Cargo.toml").write_text('[package]\nname = "accumulator"\n')
    assert prereqs.check_cargo_project(tmp_path).status == "pass"


def test_check_tool_available(write_tool: Callable[[str, str], Path]) -> None:
    write_tool("dtrace", "exit 0\n")
    assert prereqs.check_tool_available("dtrace_available", "dtrace", "").status == "pass"
    c = prereqs.check_tool_available("x_available", "no-such-tool-xyz", "Install it.")
    assert c.status == "fail"
    assert c.details is not None and "Install it." in c.details


def test_check_privilege(tmp_path: Path, write_tool: Callable[[str, str], Path]) -> None:
    cfg = default_config(tmp_path)
    assert prereqs.check_privilege(attrs.evolve(cfg, elevate=())).status == "pass"
    assert prereqs.check_privilege(attrs.evolve(cfg, elevate=("no-such-elevator-xyz",))).status == "fail"
    write_tool("doas", 'exec "$@"\n')
    c = prereqs.check_privilege(attrs.evolve(cfg, elevate=("doas",)))
    assert c.status == "pass"
    assert c.details == "via doas"


def test_check_dir_writable_probes_nearest_parent(tmp_path: Path) -> None:
    assert prereqs.check_dir_writable("stacks_dir_writable", tmp_path / "a" / "b" / "c").status == "pass"


def test_check_all_skips_cargo_checks_for_override(tmp_path: Path) -> None:
    cfg = attrs.evolve(default_config(tmp_path), executable=tmp_path / "bench", elevate=())
    names = [c.check_name for c in prereqs.check_all(cfg)]
    assert "cargo_project" not in names
    assert "cargo_available" not in names
    assert "dtrace_available" in names


def test_check_all_includes_flamegraph_pl(tmp_path: Path) -> None:
    cfg = attrs.evolve(default_config(tmp_path), renderer="flamegraph.pl", flamegraph_cmd="no-such-flamegraph.pl --hash")
    checks = {c.check_name: c for c in prereqs.check_all(cfg)}
    assert checks["flamegraph_pl_available"].status == "fail"


def test_format_prereq_failures_lists_only_failures() -> None:
    text = prereqs.format_prereq_failures(
        [
            PrerequisiteCheck(check_name="cargo_available", status="pass"),
            PrerequisiteCheck(check_name="dtrace_available", status="fail", details="`dtrace` not found on PATH."),
        ]
    )
    assert text.splitlines() == ["Missing prerequisites:", "- dtrace_available - `dtrace` not found on PATH."]
