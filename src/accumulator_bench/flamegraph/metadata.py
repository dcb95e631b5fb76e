from __future__ import annotations

import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from .model import ProfileArtifacts, ProfileRun

SCHEMA_VERSION = "0.1.0"

_NULLABLE_STR = {"type": ["string", "null"]}
_COUNT = {"type": "integer", "minimum": 0}

RUN_METADATA_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["schema_version", "profile_run", "artifacts"],
    "properties": {
        "schema_version": {"const": SCHEMA_VERSION},
        "profile_run": {
            "type": "object",
            "required": [
                "bench_name",
                "started_at",
                "finished_at",
                "status",
                "failure_reason",
                "stage",
                "filter",
                "git",
                "commands",
                "executable",
                "samples",
                "prerequisites",
            ],
            "properties": {
                "bench_name": {"type": "string", "minLength": 1},
                "started_at": {"type": "string"},
                "finished_at": _NULLABLE_STR,
                "status": {"enum": ["pass", "fail", "no_samples"]},
                "failure_reason": _NULLABLE_STR,
                "stage": {"type": "string"},
                "filter": {"type": "string"},
                "git": {
                    "type": "object",
                    "required": ["branch", "commit", "dirty"],
                    "properties": {
                        "branch": {"type": "string"},
                        "commit": {"type": "string"},
                        "dirty": {"type": "boolean"},
                    },
                },
                "commands": {"type": "object", "additionalProperties": {"type": "string"}},
                "executable": {
                    "type": ["object", "null"],
                    "required": ["path", "mtime_ns", "source"],
                    "properties": {
                        "path": {"type": "string"},
                        "mtime_ns": _COUNT,
                        "source": {"enum": ["build-report", "scan", "override"]},
                    },
                },
                "samples": {
                    "type": "object",
                    "required": ["raw_records", "folded_stacks", "kept_stacks", "total_samples", "kept_samples"],
                    "additionalProperties": _COUNT,
                },
                "prerequisites": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["check_name", "status", "details"],
                        "properties": {
                            "check_name": {"type": "string"},
                            "status": {"enum": ["pass", "fail"]},
                            "details": _NULLABLE_STR,
                        },
                    },
                },
            },
        },
        "artifacts": {"type": "object", "additionalProperties": {"type": "string"}},
    },
}


def now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _git(repo_root: Path, *args: str) -> str:
    return subprocess.check_output(["git", *args], cwd=repo_root, stderr=subprocess.DEVNULL).decode(errors="replace")


def _branch_from_status(header: str) -> str:
    # `## main...origin/main [ahead 1]`, `## HEAD (no branch)`, `## No commits yet on main`
    head = header.removeprefix("## ").split("...", 1)[0].split(" [", 1)[0].strip()
    if head.startswith("No commits yet on "):
        return head.removeprefix("No commits yet on ")
    if head.startswith("HEAD"):
        return "HEAD"
    return head or "unknown"


def git_info(repo_root: Path) -> dict[str, Any]:
    """Best-effort branch, commit and dirty flag of the crate being profiled."""
    try:
        status = _git(repo_root, "status", "--porcelain", "--branch").splitlines()
    except (OSError, subprocess.CalledProcessError):
        return {"branch": "unknown", "commit": "unknown", "dirty": False}
    header = status[0] if status and status[0].startswith("## ") else ""
    try:
        commit = _git(repo_root, "rev-parse", "HEAD").strip()
    except (OSError, subprocess.CalledProcessError):
        commit = "unknown"
    return {
        "branch": _branch_from_status(header),
        "commit": commit,
        "dirty": any(ln.strip() for ln in status[1 if header else 0 :]),
    }


def metadata_payload(run: ProfileRun, artifacts: ProfileArtifacts) -> dict[str, Any]:
    return {"schema_version": SCHEMA_VERSION, "profile_run": run.to_dict(), "artifacts": artifacts.to_dict()}


def validate_run_metadata(payload: dict[str, Any]) -> None:
    Draft202012Validator(RUN_METADATA_SCHEMA).validate(payload)
