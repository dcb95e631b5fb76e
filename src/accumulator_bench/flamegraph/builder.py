from __future__ import annotations

import contextlib
import json
import shlex
import shutil
import subprocess
import time
from pathlib import Path

import attrs

from .config import ProfileConfig
from .errors import ArtifactError, BuildError
from .model import BenchmarkTarget, ProfileArtifacts


def build_cargo_bench_argv(
    *, cargo: str, name: str, target_dir: Path | None = None, extra_args: tuple[str, ...] = ()
) -> list[str]:
    # `--no-run` compiles the bench profile (optimized) without running it; the JSON
    # messages carry the path of the produced executable.
    return [
        cargo,
        "bench",
        "--bench",
        name,
        *(["--target-dir", str(target_dir)] if target_dir is not None else []),
        "--no-run",
        "--message-format=json-render-diagnostics",
        *extra_args,
    ]


def executable_from_messages(messages: str, name: str) -> Path | None:
    """Return the executable cargo reported for bench target `name`, if any.

    `messages` is cargo's `--message-format=json` stream (one object per line). The
    last line may be partially written while cargo is still running; it is skipped.
    """
    found: Path | None = None
    for line in messages.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            continue
        if msg.get("reason") != "compiler-artifact":
            continue
        target = msg.get("target") or {}
        if target.get("name") != name or "bench" not in (target.get("kind") or []):
            continue
        exe = msg.get("executable")
        if exe:
            found = Path(exe)
    return found


@attrs.define(slots=True)
class BuildHandle:
    """A running (or finished) background `cargo bench --no-run`."""

    target: BenchmarkTarget
    argv: list[str]
    process: subprocess.Popen
    messages_path: Path
    log_path: Path
    started_at: float

    @property
    def command(self) -> str:
        return shlex.join(self.argv)

    def poll(self) -> int | None:
        return self.process.poll()

    def terminate(self) -> None:
        if self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()

    def reported_executable(self) -> Path | None:
        try:
            messages = self.messages_path.read_text(errors="replace")
        except FileNotFoundError:
            return None
        return executable_from_messages(messages, self.target.name)

    def diagnostics(self, limit: int = 40) -> str:
        try:
            lines = self.log_path.read_text(errors="replace").splitlines()
        except FileNotFoundError:
            return ""
        return "\n".join(lines[-limit:])


def start_build(*, config: ProfileConfig, target: BenchmarkTarget, artifacts: ProfileArtifacts) -> BuildHandle:
    """Launch the benchmark build in the background and return immediately."""
    cargo = shutil.which(config.cargo)
    if cargo is None:
        raise BuildError(f"{config.cargo} not found on PATH (needed to build bench {target.name!r})")

    argv = build_cargo_bench_argv(
        cargo=cargo, name=target.name, target_dir=config.target_dir, extra_args=config.cargo_args
    )
    # The child keeps its own copies of the descriptors.
    with contextlib.ExitStack() as stack:
        try:
            out = stack.enter_context(artifacts.build_messages_path.open("wb"))
            err = stack.enter_context(artifacts.build_log_path.open("wb"))
        except OSError as e:
            raise ArtifactError(f"Failed to open build output files in {artifacts.stacks_dir}: {e}") from e
        try:
            proc = subprocess.Popen(argv, cwd=config.work_root, stdin=subprocess.DEVNULL, stdout=out, stderr=err)
        except OSError as e:
            raise BuildError(f"Failed to launch build: {shlex.join(argv)}: {e}") from e

    return BuildHandle(
        target=target,
        argv=argv,
        process=proc,
        messages_path=artifacts.build_messages_path,
        log_path=artifacts.build_log_path,
        started_at=time.monotonic(),
    )
