from __future__ import annotations

import os
import re
import sys
from collections.abc import Sequence

import attrs
from jsonschema import ValidationError

from . import artifacts, prereqs
from .builder import BuildHandle, start_build
from .collapse import fold_records, read_raw_records, total_samples, write_folded
from .config import ProfileConfig
from .errors import (
    ArtifactError,
    BuildError,
    FilteredOutWarning,
    NoSamplesWarning,
    NotFoundError,
    ProfilerError,
    ProfilerPermissionError,
    RenderError,
    UsageError,
)
from .filters import StackFilter, apply_filter, build_filter
from .locator import wait_for_executable
from .metadata import git_info, metadata_payload, now_rfc3339, validate_run_metadata
from .model import BenchmarkTarget, Executable, FoldedStack, ProfileArtifacts, ProfileRun, SampleStats, Stage
from .profiler import run_sampling_profiler
from .render import RenderOptions, write_flamegraph
from .report import write_report

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_NO_SAMPLES = 3
EXIT_PERMISSION = 4


@attrs.define(slots=True)
class _RunState:
    meta: ProfileRun
    build: BuildHandle | None = None

    def at(self, stage: Stage) -> None:
        self.meta = attrs.evolve(self.meta, stage=stage)

    def command(self, key: str, value: str) -> None:
        self.meta = attrs.evolve(self.meta, commands={**self.meta.commands, key: value})


def _say(msg: str) -> None:
    print(msg, file=sys.stderr)


def stack_filter_from_config(config: ProfileConfig) -> StackFilter:
    try:
        return build_filter(
            marker=config.filter_marker,
            regex=config.filter_regex,
            min_depth=config.min_depth,
            max_depth=config.max_depth,
        )
    except (ValueError, re.error) as e:
        raise UsageError(f"Invalid stack filter: {e}") from e


def _override_executable(config: ProfileConfig) -> Executable:
    assert config.executable is not None
    p = config.executable.expanduser().resolve()
    if not p.is_file() or not os.access(p, os.X_OK):
        raise NotFoundError(f"--executable does not point to an executable file: {p}")
    return Executable(path=p, mtime_ns=p.stat().st_mtime_ns, source="override")


def _obtain_executable(
    *, config: ProfileConfig, target: BenchmarkTarget, paths: ProfileArtifacts, state: _RunState
) -> Executable:
    if config.executable is not None:
        state.at("locate")
        return _override_executable(config)

    state.at("build")
    _say("Calling cargo bench in background to generate bench fn executable.")
    state.build = start_build(config=config, target=target, artifacts=paths)
    state.command("build", state.build.command)

    state.at("locate")
    _say(f"Waiting up to {config.build_timeout_s:g}s for the {target.name} executable.")
    return wait_for_executable(
        build=state.build,
        deps_dir=config.deps_dir,
        name=target.name,
        timeout_s=config.build_timeout_s,
        poll_interval_s=config.poll_interval_s,
    )


def _collapse(
    *, paths: ProfileArtifacts, predicate: StackFilter, state: _RunState
) -> list[FoldedStack]:
    state.at("collapse")
    records = read_raw_records(paths.stacks_path)
    folded = fold_records(records)
    stats = SampleStats(raw_records=len(records), folded_stacks=len(folded), total_samples=total_samples(folded))
    state.meta = attrs.evolve(state.meta, samples=stats)
    if not folded:
        raise NoSamplesWarning(f"No stack samples found in {paths.stacks_path}")

    kept = apply_filter(folded, predicate)
    state.meta = attrs.evolve(
        state.meta,
        samples=attrs.evolve(stats, kept_stacks=len(kept), kept_samples=total_samples(kept)),
    )
    if not kept:
        raise FilteredOutWarning(
            f"Stack filter {predicate.describe()!r} rejected all {len(folded)} folded stacks; nothing to render"
        )

    _say(f"Folded {stats.total_samples} samples into {len(folded)} stacks; {len(kept)} kept by the filter.")
    write_folded(paths.folded_path, kept)
    artifacts.require_nonempty(paths.folded_path, what="folded stacks")
    return kept


def _render(
    *,
    config: ProfileConfig,
    target: BenchmarkTarget,
    paths: ProfileArtifacts,
    stacks: Sequence[FoldedStack],
    predicate: StackFilter,
    state: _RunState,
) -> None:
    state.at("render")
    _say("Generating flamegraph.")
    options = RenderOptions(
        title=config.title or f"Flame Graph: {target.name}",
        width=config.width,
        renderer=config.renderer,
        flamegraph_cmd=config.flamegraph_cmd,
    )
    state.command("render", "builtin" if config.renderer == "builtin" else config.flamegraph_cmd)
    write_flamegraph(stacks, paths.svg_path, options)
    artifacts.require_nonempty(paths.svg_path, what="flamegraph")

    try:
        write_report(
            report_path=paths.report_path,
            bench_name=target.name,
            stacks=stacks,
            svg_path=paths.svg_path,
            filter_desc=predicate.describe(),
            commands=state.meta.commands,
            limit=config.report_limit,
        )
    except OSError as e:
        raise ArtifactError(f"Failed to write report {paths.report_path}: {e}") from e


def _execute(
    *,
    config: ProfileConfig,
    target: BenchmarkTarget,
    paths: ProfileArtifacts,
    predicate: StackFilter,
    state: _RunState,
) -> int:
    if config.check_prereqs:
        state.at("prereqs")
        checks = prereqs.check_all(config)
        state.meta = attrs.evolve(state.meta, prerequisites=checks)
        if any(c.status == "fail" for c in checks):
            _say(prereqs.format_prereq_failures(checks))
            state.meta = attrs.evolve(state.meta, failure_reason="missing_prerequisites")
            return EXIT_USAGE

    state.at("prepare")
    artifacts.ensure_artifact_dirs(paths)
    artifacts.clear_previous_outputs(paths)

    exe = _obtain_executable(config=config, target=target, paths=paths, state=state)
    state.meta = attrs.evolve(state.meta, executable=exe)

    state.at("profile")
    _say("Calling dtrace to run this executable and collect its stack frames.")
    result = run_sampling_profiler(config=config, exe=exe.path, stacks_path=paths.stacks_path)
    state.command("profile", result.command)

    stacks = _collapse(paths=paths, predicate=predicate, state=state)
    _render(config=config, target=target, paths=paths, stacks=stacks, predicate=predicate, state=state)

    state.at("done")
    state.meta = attrs.evolve(state.meta, status="pass", failure_reason=None)
    _say(f"Done. Your flamegraph is now at: {paths.svg_path}")
    print(paths.svg_path)
    return EXIT_OK


def _write_run_metadata(state: _RunState, paths: ProfileArtifacts) -> bool:
    if not paths.stacks_dir.is_dir():
        return True
    payload = metadata_payload(state.meta, paths)
    try:
        validate_run_metadata(payload)
        artifacts.write_metadata(paths.metadata_path, payload)
    except (ValidationError, ArtifactError) as e:
        _say(f"Failed to write run metadata: {e}")
        return False
    return True


def run(*, bench_name: str, config: ProfileConfig) -> int:
    """Build, profile and render one benchmark. Returns the process exit code.

    Once the name is valid, this always attempts to record `<name>.run.json`
    in the stacks directory, whatever stage the run stopped at.
    """
    try:
        target = BenchmarkTarget(bench_name)
        predicate = stack_filter_from_config(config)
    except UsageError as e:
        _say(str(e))
        return EXIT_USAGE

    paths = artifacts.artifact_paths(config, target)
    state = _RunState(
        meta=ProfileRun(
            bench_name=target.name,
            started_at=now_rfc3339(),
            finished_at=None,
            status="fail",
            failure_reason=None,
            stage="validate",
            filter=predicate.describe(),
            git=git_info(config.work_root),
            commands={"build": "", "profile": "", "render": ""},
        )
    )

    exit_code = EXIT_FAILURE
    metadata_ok = True
    try:
        exit_code = _execute(config=config, target=target, paths=paths, predicate=predicate, state=state)
    except ProfilerPermissionError as e:
        _say(f"Permission error: {e}")
        state.meta = attrs.evolve(state.meta, failure_reason=f"permission: {e}")
        exit_code = EXIT_PERMISSION
    except NoSamplesWarning as e:
        _say(f"No samples: {e}")
        state.meta = attrs.evolve(state.meta, status="no_samples", failure_reason=str(e))
        exit_code = EXIT_NO_SAMPLES
    except (BuildError, NotFoundError, ProfilerError, RenderError, ArtifactError) as e:
        _say(f"{type(e).__name__}: {e}")
        state.meta = attrs.evolve(state.meta, failure_reason=str(e))
        exit_code = EXIT_FAILURE
    finally:
        if state.build is not None:
            state.build.terminate()
        state.meta = attrs.evolve(state.meta, finished_at=now_rfc3339())
        metadata_ok = _write_run_metadata(state, paths)

    if not metadata_ok and exit_code == EXIT_OK:
        return EXIT_FAILURE
    return exit_code
