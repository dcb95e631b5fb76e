from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

import attrs

from .errors import UsageError

RunStatus = Literal["pass", "fail", "no_samples"]
ExecutableSource = Literal["build-report", "scan", "override"]
Stage = Literal["validate", "prereqs", "prepare", "build", "locate", "profile", "collapse", "render", "done"]
CheckStatus = Literal["pass", "fail"]

_BENCH_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")


def _check_bench_name(_instance: Any, _attribute: Any, value: str) -> None:
    if not value or not value.strip():
        raise UsageError("Please supply bench name as argument.")
    if not _BENCH_NAME_RE.fullmatch(value):
        raise UsageError(f"Invalid bench name {value!r}. Expected /^[A-Za-z0-9][A-Za-z0-9_-]{{0,127}}$/.")


@attrs.define(frozen=True, slots=True)
class BenchmarkTarget:
    name: str = attrs.field(validator=_check_bench_name)


@attrs.define(frozen=True, slots=True)
class Executable:
    path: Path
    mtime_ns: int
    source: ExecutableSource

    def to_dict(self) -> dict[str, Any]:
        return {"path": str(self.path), "mtime_ns": self.mtime_ns, "source": self.source}


@attrs.define(frozen=True, slots=True)
class FoldedStack:
    """One unique root->leaf call path and how often it was sampled."""

    frames: tuple[str, ...]
    count: int

    def to_line(self) -> str:
        return f"{';'.join(self.frames)} {self.count}"

    @property
    def depth(self) -> int:
        return len(self.frames)

    @staticmethod
    def from_line(line: str) -> "FoldedStack":
        text = line.strip()
        stack_part, sep, count_part = text.rpartition(" ")
        if not sep or not stack_part:
            raise ValueError(f"Malformed folded stack line: {line!r}")
        try:
            count = int(count_part)
        except ValueError as e:
            raise ValueError(f"Malformed folded stack count: {line!r}") from e
        if count <= 0:
            raise ValueError(f"Folded stack count must be positive: {line!r}")
        return FoldedStack(frames=tuple(stack_part.split(";")), count=count)


@attrs.define(frozen=True, slots=True)
class FrameRect:
    name: str
    depth: int
    x: float
    width: float
    samples: int


@attrs.define(frozen=True, slots=True)
class ProfileArtifacts:
    stacks_dir: Path
    graphs_dir: Path
    stacks_path: Path
    folded_path: Path
    build_messages_path: Path
    build_log_path: Path
    metadata_path: Path
    svg_path: Path
    report_path: Path

    def to_dict(self) -> dict[str, Any]:
        return {
            "stacks_path": str(self.stacks_path),
            "folded_path": str(self.folded_path),
            "build_messages_path": str(self.build_messages_path),
            "build_log_path": str(self.build_log_path),
            "metadata_path": str(self.metadata_path),
            "svg_path": str(self.svg_path),
            "report_path": str(self.report_path),
        }


@attrs.define(frozen=True, slots=True)
class PrerequisiteCheck:
    check_name: str
    status: CheckStatus
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"check_name": self.check_name, "status": self.status, "details": self.details}


@attrs.define(frozen=True, slots=True)
class SampleStats:
    raw_records: int = 0
    folded_stacks: int = 0
    kept_stacks: int = 0
    total_samples: int = 0
    kept_samples: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw_records": self.raw_records,
            "folded_stacks": self.folded_stacks,
            "kept_stacks": self.kept_stacks,
            "total_samples": self.total_samples,
            "kept_samples": self.kept_samples,
        }


@attrs.define(frozen=True, slots=True)
class ProfileRun:
    bench_name: str
    started_at: str
    finished_at: str | None
    status: RunStatus
    failure_reason: str | None
    stage: Stage
    filter: str
    git: dict[str, Any]
    commands: dict[str, str]
    executable: Executable | None = None
    samples: SampleStats = attrs.field(factory=SampleStats)
    prerequisites: list[PrerequisiteCheck] = attrs.field(factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bench_name": self.bench_name,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "stage": self.stage,
            "filter": self.filter,
            "git": self.git,
            "commands": self.commands,
            "executable": self.executable.to_dict() if self.executable is not None else None,
            "samples": self.samples.to_dict(),
            "prerequisites": [c.to_dict() for c in self.prerequisites],
        }
