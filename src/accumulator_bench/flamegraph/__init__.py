"""Benchmark flamegraph pipeline (Python orchestrator layer).

This package builds a cargo benchmark target, runs the produced executable under
dtrace, folds the sampled user stacks and renders them as an SVG flame graph.
All outputs land in a deterministic per-benchmark layout so repeated runs for
the same name overwrite each other.
"""

from __future__ import annotations
