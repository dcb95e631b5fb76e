from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

import attrs

from . import workflow
from .config import ProfileConfig, apply_env_overrides, default_config


def _abs_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for the benchmark flamegraph pipeline."""
    parser = argparse.ArgumentParser(
        prog="accumulator_bench.flamegraph",
        description="Build a cargo bench target, profile it with dtrace and render a flamegraph SVG.",
    )
    parser.add_argument("bench_name", help="Cargo bench target name (benches/<name>.rs).")
    parser.add_argument("--work-root", type=_abs_path, default=None, help="Crate root (default: current directory).")
    parser.add_argument("--stacks-dir", type=_abs_path, default=None, help="Raw/folded stacks dir (default: <root>/flamegraph/stacks).")
    parser.add_argument("--graphs-dir", type=_abs_path, default=None, help="SVG output dir (default: <root>/flamegraph/graphs).")
    parser.add_argument("--target-dir", type=_abs_path, default=None, help="Cargo target dir, passed to cargo as --target-dir (default: <root>/target).")
    parser.add_argument("--executable", type=_abs_path, default=None, help="Profile this executable instead of building.")
    parser.add_argument("--cargo-arg", dest="cargo_args", action="append", default=[], help="Extra cargo argument (repeatable).")

    sampling = parser.add_argument_group("sampling")
    sampling.add_argument("--frequency", type=int, default=None, help="Sampling frequency in Hz (default: 997).")
    sampling.add_argument("--ustack-frames", type=int, default=None, help="Max user frames per sample (default: 100).")
    elevate = sampling.add_mutually_exclusive_group()
    elevate.add_argument("--elevate", default=None, help="Command used to run dtrace with privilege (default: sudo).")
    elevate.add_argument("--no-elevate", action="store_true", help="Run dtrace directly.")

    filt = parser.add_argument_group("stack filter")
    filt.add_argument("--filter", dest="filter_marker", default=None, help="Keep stacks containing this substring (default: closure).")
    filt.add_argument("--filter-regex", default=None, help="Keep stacks where a frame matches this regex.")
    filt.add_argument("--min-depth", type=int, default=None)
    filt.add_argument("--max-depth", type=int, default=None)
    filt.add_argument("--no-filter", action="store_true", help="Disable the substring filter.")

    waiting = parser.add_argument_group("build wait")
    waiting.add_argument("--build-timeout", type=float, default=None, help="Seconds to wait for the executable (default: 600).")
    waiting.add_argument("--poll-interval", type=float, default=None, help="Seconds between checks (default: 0.5).")

    render = parser.add_argument_group("rendering")
    render.add_argument("--renderer", choices=["builtin", "flamegraph.pl"], default=None)
    render.add_argument("--flamegraph-cmd", default=None, help="flamegraph.pl command line (renderer flamegraph.pl).")
    render.add_argument("--title", default=None)
    render.add_argument("--width", type=int, default=None)
    render.add_argument("--report-limit", type=int, default=None, help="Frames listed in the Markdown report.")

    parser.add_argument("--skip-prereqs", action="store_true", help="Do not check for cargo/dtrace/privilege up front.")
    return parser


def config_from_args(ns: argparse.Namespace) -> ProfileConfig:
    config = apply_env_overrides(default_config(ns.work_root))
    changes: dict[str, Any] = {}
    if ns.stacks_dir is not None:
        changes["stacks_dir"] = ns.stacks_dir
    if ns.graphs_dir is not None:
        changes["graphs_dir"] = ns.graphs_dir
    if ns.target_dir is not None:
        changes["target_dir"] = ns.target_dir
    if ns.executable is not None:
        changes["executable"] = ns.executable
    if ns.cargo_args:
        changes["cargo_args"] = tuple(ns.cargo_args)
    if ns.frequency is not None:
        changes["frequency_hz"] = ns.frequency
    if ns.ustack_frames is not None:
        changes["ustack_frames"] = ns.ustack_frames
    if ns.no_elevate:
        changes["elevate"] = ()
    elif ns.elevate is not None:
        changes["elevate"] = tuple(ns.elevate.split())
    if ns.no_filter:
        changes["filter_marker"] = None
    elif ns.filter_marker is not None:
        changes["filter_marker"] = ns.filter_marker
    for key in ("filter_regex", "min_depth", "max_depth", "renderer", "flamegraph_cmd", "title", "width", "report_limit"):
        value = getattr(ns, key)
        if value is not None:
            changes[key] = value
    if ns.build_timeout is not None:
        changes["build_timeout_s"] = ns.build_timeout
    if ns.poll_interval is not None:
        changes["poll_interval_s"] = ns.poll_interval
    if ns.skip_prereqs:
        changes["check_prereqs"] = False
    return attrs.evolve(config, **changes)


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint. Returns process exit code."""
    parser = build_parser()
    ns = parser.parse_args(argv)
    try:
        config = config_from_args(ns)
    except ValueError as e:
        parser.error(str(e))
    return workflow.run(bench_name=ns.bench_name, config=config)


if __name__ == "__main__":
    raise SystemExit(main())
