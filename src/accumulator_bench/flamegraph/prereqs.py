from __future__ import annotations

import os
import shutil
from pathlib import Path

from .config import DEFAULT_ELEVATE, ProfileConfig
from .model import PrerequisiteCheck


def check_cargo_project(work_root: Path) -> PrerequisiteCheck:
    if (work_root / "Cargo.toml").is_file():
        return PrerequisiteCheck(check_name="cargo_project", status="pass")
    return PrerequisiteCheck(
        check_name="cargo_project",
        status="fail",
        details=f"No Cargo.toml in {work_root}; run from the crate root or pass --work-root.",
    )


def check_tool_available(check_name: str, tool: str, hint: str) -> PrerequisiteCheck:
    if shutil.which(tool) is not None:
        return PrerequisiteCheck(check_name=check_name, status="pass")
    return PrerequisiteCheck(check_name=check_name, status="fail", details=f"`{tool}` not found on PATH. {hint}")


def check_privilege(config: ProfileConfig) -> PrerequisiteCheck:
    """dtrace needs root; accept running as root or an elevation wrapper on PATH."""
    if config.elevate == ():
        return PrerequisiteCheck(check_name="privilege", status="pass", details="elevation disabled")
    if config.elevate is None and hasattr(os, "geteuid") and os.geteuid() == 0:
        return PrerequisiteCheck(check_name="privilege", status="pass", details="running as root")
    wrapper = config.elevate[0] if config.elevate else DEFAULT_ELEVATE
    if shutil.which(wrapper) is not None:
        return PrerequisiteCheck(check_name="privilege", status="pass", details=f"via {wrapper}")
    return PrerequisiteCheck(
        check_name="privilege",
        status="fail",
        details=f"Not root and `{wrapper}` not found on PATH. Re-run as root.",
    )


def check_dir_writable(check_name: str, d: Path) -> PrerequisiteCheck:
    """Probe writability of `d`, or of its nearest existing parent when `d` does not exist yet."""
    probe = d
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    if probe.is_dir() and os.access(probe, os.W_OK | os.X_OK):
        return PrerequisiteCheck(check_name=check_name, status="pass")
    return PrerequisiteCheck(check_name=check_name, status="fail", details=f"Cannot write under {probe}")


def check_all(config: ProfileConfig) -> list[PrerequisiteCheck]:
    checks: list[PrerequisiteCheck] = []
    if config.executable is None:
        checks.append(check_cargo_project(config.work_root))
        checks.append(check_tool_available("cargo_available", config.cargo, "Install Rust via rustup."))
    checks.append(
        check_tool_available("dtrace_available", config.dtrace, "dtrace ships with macOS, illumos and FreeBSD.")
    )
    checks.append(check_privilege(config))
    checks.append(check_dir_writable("stacks_dir_writable", config.stacks_dir))
    checks.append(check_dir_writable("graphs_dir_writable", config.graphs_dir))
    if config.renderer == "flamegraph.pl":
        checks.append(
            check_tool_available(
                "flamegraph_pl_available",
                config.flamegraph_cmd.split()[0] if config.flamegraph_cmd.split() else "",
                "Get it from https://github.com/brendangregg/FlameGraph or use --renderer builtin.",
            )
        )
    return checks


def format_prereq_failures(checks: list[PrerequisiteCheck]) -> str:
    lines: list[str] = ["Missing prerequisites:"]
    for c in checks:
        if c.status != "fail":
            continue
        hint = f" - {c.details}" if c.details else ""
        lines.append(f"- {c.check_name}{hint}")
    return "\n".join(lines)
