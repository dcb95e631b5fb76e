from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .config import ProfileConfig
from .errors import ArtifactError
from .model import BenchmarkTarget, ProfileArtifacts


def artifact_paths(config: ProfileConfig, target: BenchmarkTarget) -> ProfileArtifacts:
    """Return every path one run for `target` reads or writes."""
    stacks_dir = config.stacks_dir.resolve()
    graphs_dir = config.graphs_dir.resolve()
    name = target.name
    return ProfileArtifacts(
        stacks_dir=stacks_dir,
        graphs_dir=graphs_dir,
        stacks_path=stacks_dir / f"{name}.stacks",
        folded_path=stacks_dir / f"{name}.folded",
        build_messages_path=stacks_dir / f"{name}.build.jsonl",
        build_log_path=stacks_dir / f"{name}.build.log",
        metadata_path=stacks_dir / f"{name}.run.json",
        svg_path=graphs_dir / f"{name}.svg",
        report_path=graphs_dir / f"{name}.md",
    )


def ensure_artifact_dirs(artifacts: ProfileArtifacts) -> None:
    """Create the stacks and graphs directories if absent (idempotent)."""
    for d in (artifacts.stacks_dir, artifacts.graphs_dir):
        try:
            d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactError(f"Failed to create output directory {d}: {e}") from e


def clear_previous_outputs(artifacts: ProfileArtifacts) -> None:
    """Remove outputs of an earlier run for the same benchmark name."""
    for p in (artifacts.stacks_path, artifacts.folded_path, artifacts.svg_path, artifacts.report_path):
        try:
            p.unlink(missing_ok=True)
        except OSError as e:
            raise ArtifactError(f"Failed to remove previous output {p}: {e}") from e


def write_text_atomic(path: Path, text: str) -> None:
    """Write `text` to `path` via a sibling temp file so readers never see a partial file."""
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise ArtifactError(f"Failed to write {path}: {e}") from e
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        tmp.replace(path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise ArtifactError(f"Failed to write {path}: {e}") from e


def require_nonempty(path: Path, *, what: str) -> None:
    """Raise ArtifactError unless `path` exists and has content."""
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        raise ArtifactError(f"Missing {what}: {path}") from None
    if size == 0:
        raise ArtifactError(f"Empty {what}: {path}")


def write_metadata(metadata_path: Path, payload: dict[str, Any]) -> None:
    write_text_atomic(metadata_path, json.dumps(payload, indent=2, sort_keys=True) + "\n")
