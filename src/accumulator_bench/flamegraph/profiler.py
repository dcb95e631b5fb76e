from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path

import attrs

from .config import DEFAULT_ELEVATE, ProfileConfig
from .errors import NoSamplesWarning, ProfilerError, ProfilerPermissionError

# Substrings (lowercased) that dtrace or the elevation wrapper print when privilege is missing.
_PERMISSION_MARKERS: tuple[str, ...] = (
    "requires additional privileges",
    "permission denied",
    "operation not permitted",
    "a password is required",
    "not in the sudoers file",
    "incorrect password",
    "not allowed to execute",
    "a terminal is required",
    "no tty present",
    "askpass",
)


@attrs.define(frozen=True, slots=True)
class ProfilerResult:
    argv: list[str]
    stacks_path: Path
    returncode: int
    stderr: str

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


def dtrace_program(frequency_hz: int) -> str:
    """D program sampling user stacks of the traced child only."""
    return f"profile-{frequency_hz} /pid == $target/ {{ @[ustack()] = count(); }}"


def build_dtrace_argv(*, dtrace: str, exe: Path, stacks_path: Path, frequency_hz: int, ustack_frames: int) -> list[str]:
    return [
        dtrace,
        "-x",
        f"ustackframes={ustack_frames}",
        "-c",
        str(exe),
        "-o",
        str(stacks_path),
        "-n",
        dtrace_program(frequency_hz),
    ]


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def elevation_prefix(config: ProfileConfig) -> list[str]:
    """Return the argv prefix used to gain the privilege dtrace needs."""
    if config.elevate is None:
        if _is_root():
            return []
        wrapper: tuple[str, ...] = (DEFAULT_ELEVATE,)
    else:
        wrapper = config.elevate
    if not wrapper:
        return []

    resolved = shutil.which(wrapper[0])
    if resolved is None:
        raise ProfilerPermissionError(
            f"dtrace needs elevated privileges but {wrapper[0]!r} was not found on PATH. "
            "Re-run as root or configure an elevation command."
        )
    return [resolved, *wrapper[1:]]


def is_permission_failure(stderr: str, *, wrapper: str | None = None) -> bool:
    """Classify a failed launch as missing privilege.

    With an elevation `wrapper` in use, any line the wrapper itself printed
    (`sudo: ...`) counts: the wrapper never got as far as running dtrace.
    """
    text = stderr.lower()
    if any(m in text for m in _PERMISSION_MARKERS):
        return True
    if wrapper:
        tag = f"{wrapper.lower()}:"
        return any(ln.strip().startswith(tag) for ln in text.splitlines())
    return False


def _last_line(text: str) -> str:
    lines = [ln for ln in text.strip().splitlines() if ln.strip()]
    return lines[-1] if lines else ""


def run_sampling_profiler(*, config: ProfileConfig, exe: Path, stacks_path: Path) -> ProfilerResult:
    """Run `exe` to completion under dtrace, writing aggregated user stacks to `stacks_path`."""
    dtrace = shutil.which(config.dtrace)
    if dtrace is None:
        raise ProfilerError(f"{config.dtrace} not found on PATH")

    if any(c.isspace() for c in str(exe)):
        # dtrace -c splits its argument on whitespace.
        raise ProfilerError(f"Cannot profile {exe}: dtrace -c does not accept paths containing whitespace")

    prefix = elevation_prefix(config)
    argv = [
        *prefix,
        *build_dtrace_argv(
            dtrace=dtrace,
            exe=exe,
            stacks_path=stacks_path,
            frequency_hz=config.frequency_hz,
            ustack_frames=config.ustack_frames,
        ),
    ]
    if prefix:
        print(f"Requesting elevated privileges via {Path(prefix[0]).name}; you may be prompted.", file=sys.stderr)

    # stdin stays attached to the terminal so the elevation wrapper can prompt.
    try:
        proc = subprocess.run(
            argv,
            cwd=config.work_root,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            check=False,
        )
    except PermissionError as e:
        raise ProfilerPermissionError(f"Cannot execute {argv[0]}: {e}. Re-run with elevated rights.") from e
    except OSError as e:
        raise ProfilerError(f"Failed to launch profiler: {shlex.join(argv)}: {e}") from e

    stderr = proc.stderr.decode(errors="replace")
    result = ProfilerResult(argv=argv, stacks_path=stacks_path, returncode=proc.returncode, stderr=stderr)

    if proc.returncode != 0:
        if is_permission_failure(stderr, wrapper=Path(prefix[0]).name if prefix else None):
            raise ProfilerPermissionError(
                f"dtrace could not attach (insufficient privilege): {_last_line(stderr)}. "
                "Re-run with elevated rights (e.g. as root or via sudo)."
            )
        raise ProfilerError(f"dtrace exited with code {proc.returncode}: {_last_line(stderr) or result.command}")

    if not stacks_path.exists():
        raise ProfilerError(f"dtrace exited successfully but wrote no stacks file: {stacks_path}")
    if stacks_path.stat().st_size == 0:
        raise NoSamplesWarning(
            f"dtrace captured no samples for {exe.name}; the benchmark may finish faster than one "
            f"sampling interval at {config.frequency_hz} Hz"
        )
    return result
