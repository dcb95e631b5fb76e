from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

import attrs

RendererName = Literal["builtin", "flamegraph.pl"]

DEFAULT_SAMPLE_FREQUENCY_HZ = 997
DEFAULT_USTACK_FRAMES = 100
DEFAULT_FILTER_MARKER = "closure"
DEFAULT_BUILD_TIMEOUT_S = 600.0
DEFAULT_POLL_INTERVAL_S = 0.5
DEFAULT_WIDTH = 1200
DEFAULT_REPORT_LIMIT = 20
DEFAULT_ELEVATE = "sudo"

ENV_CARGO = "BENCH_FLAMEGRAPH_CARGO"
ENV_DTRACE = "BENCH_FLAMEGRAPH_DTRACE"
ENV_ELEVATE = "BENCH_FLAMEGRAPH_ELEVATE"
ENV_FLAMEGRAPH_PL = "BENCH_FLAMEGRAPH_FLAMEGRAPH_PL"


def _positive(_instance: object, attribute: attrs.Attribute, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{attribute.name} must be positive, got {value!r}")


def _optional_depth(_instance: object, attribute: attrs.Attribute, value: int | None) -> None:
    if value is not None and value < 1:
        raise ValueError(f"{attribute.name} must be >= 1, got {value!r}")


@attrs.define(frozen=True, slots=True)
class ProfileConfig:
    """Everything one pipeline run needs besides the benchmark name."""

    work_root: Path
    stacks_dir: Path
    graphs_dir: Path
    target_dir: Path
    cargo: str = "cargo"
    cargo_args: tuple[str, ...] = ()
    dtrace: str = "dtrace"
    # None: elevate with DEFAULT_ELEVATE unless already root. (): never elevate.
    elevate: tuple[str, ...] | None = None
    frequency_hz: int = attrs.field(default=DEFAULT_SAMPLE_FREQUENCY_HZ, validator=_positive)
    ustack_frames: int = attrs.field(default=DEFAULT_USTACK_FRAMES, validator=_positive)
    build_timeout_s: float = attrs.field(default=DEFAULT_BUILD_TIMEOUT_S, validator=_positive)
    poll_interval_s: float = attrs.field(default=DEFAULT_POLL_INTERVAL_S, validator=_positive)
    filter_marker: str | None = DEFAULT_FILTER_MARKER
    filter_regex: str | None = None
    min_depth: int | None = attrs.field(default=None, validator=_optional_depth)
    max_depth: int | None = attrs.field(default=None, validator=_optional_depth)
    renderer: RendererName = "builtin"
    flamegraph_cmd: str = "flamegraph.pl"
    title: str | None = None
    width: int = attrs.field(default=DEFAULT_WIDTH, validator=_positive)
    executable: Path | None = None
    report_limit: int = attrs.field(default=DEFAULT_REPORT_LIMIT, validator=_positive)
    check_prereqs: bool = True

    @property
    def deps_dir(self) -> Path:
        """Directory where `cargo bench` places optimized benchmark executables."""
        return self.target_dir / "release" / "deps"


def default_config(work_root: Path | None = None) -> ProfileConfig:
    root = (work_root or Path.cwd()).expanduser().resolve()
    return ProfileConfig(
        work_root=root,
        stacks_dir=root / "flamegraph" / "stacks",
        graphs_dir=root / "flamegraph" / "graphs",
        target_dir=root / "target",
    )


def apply_env_overrides(config: ProfileConfig, env: Mapping[str, str] | None = None) -> ProfileConfig:
    """Apply `BENCH_FLAMEGRAPH_*` environment overrides (CLI flags are applied later)."""
    env = os.environ if env is None else env
    changes: dict[str, object] = {}
    if env.get(ENV_CARGO):
        changes["cargo"] = env[ENV_CARGO]
    if env.get(ENV_DTRACE):
        changes["dtrace"] = env[ENV_DTRACE]
    if ENV_ELEVATE in env:
        # An empty value disables elevation (e.g. when dtrace is setuid or already permitted).
        changes["elevate"] = tuple(env[ENV_ELEVATE].split())
    if env.get(ENV_FLAMEGRAPH_PL):
        changes["flamegraph_cmd"] = env[ENV_FLAMEGRAPH_PL]
    if not changes:
        return config
    return attrs.evolve(config, **changes)
