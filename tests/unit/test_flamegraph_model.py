from __future__ import annotations

import pytest

from accumulator_bench.flamegraph.errors import UsageError
from accumulator_bench.flamegraph.model import BenchmarkTarget, FoldedStack


def test_benchmark_target_accepts_cargo_names() -> None:
    assert BenchmarkTarget("hash_bench").name == "hash_bench"
    assert BenchmarkTarget("group-rsa").name == "group-rsa"


@pytest.mark.parametrize("name", ["", "   ", "../etc", "a b", "-leading-dash", "x/y"])
def test_benchmark_target_rejects_unusable_names(name: str) -> None:
    with pytest.raises(UsageError):
        BenchmarkTarget(name)


def test_folded_stack_line_format() -> None:
    s = FoldedStack(frames=("main", "hash", "sha256"), count=3)
    assert s.to_line() == "main;hash;sha256 3"
    assert s.depth == 3


def test_folded_stack_from_line_keeps_spaces_in_frames() -> None:
    s = FoldedStack.from_line("main;<T as core::ops::Add>::add 7\n")
    assert s.frames == ("main", "<T as core::ops::Add>::add")
    assert s.count == 7


@pytest.mark.parametrize("line", ["main;hash", "main;hash x", "main;hash 0", " 4"])
def test_folded_stack_from_line_rejects_malformed(line: str) -> None:
    with pytest.raises(ValueError):
        FoldedStack.from_line(line)
