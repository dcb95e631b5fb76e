from __future__ import annotations

import json
from pathlib import Path

import attrs
import pytest

from accumulator_bench.flamegraph.artifacts import artifact_paths, ensure_artifact_dirs
from accumulator_bench.flamegraph.builder import build_cargo_bench_argv, executable_from_messages, start_build
from accumulator_bench.flamegraph.config import default_config
from accumulator_bench.flamegraph.errors import ArtifactError, BuildError
from accumulator_bench.flamegraph.locator import wait_for_executable
from accumulator_bench.flamegraph.model import BenchmarkTarget


def _artifact_msg(name: str, kind: list[str], exe: str | None) -> str:
    return json.dumps(
        {"reason": "compiler-artifact", "target": {"name": name, "kind": kind}, "executable": exe}
    )


def test_build_argv_is_release_no_run() -> None:
    argv = build_cargo_bench_argv(cargo="cargo", name="accumulator", extra_args=("--features", "flint"))
    assert argv[:4] == ["cargo", "bench", "--bench", "accumulator"]
    assert "--no-run" in argv
    assert "--message-format=json-render-diagnostics" in argv
    assert argv[-2:] == ["--features", "flint"]
    assert "--target-dir" not in argv


def test_build_argv_passes_target_dir() -> None:
    argv = build_cargo_bench_argv(cargo="cargo", name="uint", target_dir=Path("/build/target"))
    assert argv[argv.index("--target-dir") + 1] == "/build/target"


def test_executable_from_messages_matches_bench_target() -> None:
    messages = "\n".join(
        [
            _artifact_msg("accumulator", ["lib"], None),
            _artifact_msg("uint", ["bench"], "/t/release/deps/uint-1111111111111111"),
            _artifact_msg("accumulator", ["bench"], "/t/release/deps/accumulator-2222222222222222"),
            json.dumps({"reason": "build-finished", "success": True}),
            '{"reason": "compiler-artifact", "target"',
        ]
    )
    assert executable_from_messages(messages, "accumulator") == Path("/t/release/deps/accumulator-2222222222222222")
    assert executable_from_messages(messages, "uint") == Path("/t/release/deps/uint-1111111111111111")
    assert executable_from_messages(messages, "delete") is None
    assert executable_from_messages("", "uint") is None


def test_start_build_reports_executable(tmp_path: Path, fake_cargo: Path) -> None:
    cfg = default_config(tmp_path)
    target = BenchmarkTarget("hash_bench")
    paths = artifact_paths(cfg, target)
    ensure_artifact_dirs(paths)

    handle = start_build(config=cfg, target=target, artifacts=paths)
    exe = wait_for_executable(
        build=handle, deps_dir=cfg.deps_dir, name="hash_bench", timeout_s=30, poll_interval_s=0.05
    )
    assert exe.source == "build-report"
    assert exe.path == cfg.deps_dir / "hash_bench-0123456789abcdef"
    assert handle.command.endswith("--no-run --message-format=json-render-diagnostics")


def test_start_build_failure_carries_diagnostics(tmp_path: Path, fake_cargo: Path) -> None:
    cfg = default_config(tmp_path)
    target = BenchmarkTarget("nope")
    paths = artifact_paths(cfg, target)
    ensure_artifact_dirs(paths)

    handle = start_build(config=cfg, target=target, artifacts=paths)
    with pytest.raises(BuildError) as ei:
        wait_for_executable(build=handle, deps_dir=cfg.deps_dir, name="nope", timeout_s=30, poll_interval_s=0.05)
    assert "no bench target named `nope`" in ei.value.diagnostics


def test_start_build_without_cargo(tmp_path: Path) -> None:
    cfg = attrs.evolve(default_config(tmp_path), cargo="definitely-not-cargo")
    target = BenchmarkTarget("uint")
    paths = artifact_paths(cfg, target)
    ensure_artifact_dirs(paths)
    with pytest.raises(BuildError, match="not found on PATH"):
        start_build(config=cfg, target=target, artifacts=paths)


def test_start_build_uses_configured_target_dir(tmp_path: Path, fake_cargo: Path) -> None:
    cfg = attrs.evolve(default_config(tmp_path), target_dir=tmp_path / "shared-target")
    target = BenchmarkTarget("hash_bench")
    paths = artifact_paths(cfg, target)
    ensure_artifact_dirs(paths)

    handle = start_build(config=cfg, target=target, artifacts=paths)
    exe = wait_for_executable(build=handle, deps_dir=cfg.deps_dir, name="hash_bench", timeout_s=30, poll_interval_s=0.05)
    assert exe.path == tmp_path / "shared-target" / "release" / "deps" / "hash_bench-0123456789abcdef"
    assert not (tmp_path / "target").exists()


def test_start_build_without_output_dirs(tmp_path: Path, fake_cargo: Path) -> None:
    cfg = default_config(tmp_path)
    target = BenchmarkTarget("hash_bench")
    with pytest.raises(ArtifactError, match="build output files"):
        start_build(config=cfg, target=target, artifacts=artifact_paths(cfg, target))
