from __future__ import annotations

import os
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from .errors import BuildError, NotFoundError
from .model import Executable


class BuildProcess(Protocol):
    def poll(self) -> int | None: ...

    def terminate(self) -> None: ...

    def reported_executable(self) -> Path | None: ...

    def diagnostics(self, limit: int = 40) -> str: ...


def _candidate_re(name: str) -> re.Pattern[str]:
    # cargo names bench executables `<target>-<16 hex digit metadata hash>`.
    return re.compile(rf"^{re.escape(name)}-[0-9a-f]+(\.exe)?$")


def candidate_executables(deps_dir: Path, name: str) -> list[Path]:
    """Return executable files in `deps_dir` built for bench target `name`, sorted by path."""
    if not deps_dir.is_dir():
        return []
    pattern = _candidate_re(name)
    out: list[Path] = []
    for p in deps_dir.iterdir():
        if not pattern.fullmatch(p.name):
            continue
        if p.is_file() and os.access(p, os.X_OK):
            out.append(p)
    return sorted(out)


def locate_executable(deps_dir: Path, name: str) -> Executable:
    """Pick the most recently modified executable for `name`.

    Ties on modification time are broken by path so repeated calls on the same
    directory snapshot always agree.
    """
    best: tuple[int, str, Path] | None = None
    for p in candidate_executables(deps_dir, name):
        key = (p.stat().st_mtime_ns, str(p), p)
        if best is None or key[:2] > best[:2]:
            best = key
    if best is None:
        raise NotFoundError(f"No executable matching {name}-* in {deps_dir}. Does bench target {name!r} exist?")
    return Executable(path=best[2], mtime_ns=best[0], source="scan")


def _reported(path: Path) -> Executable | None:
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    return Executable(path=path, mtime_ns=st.st_mtime_ns, source="build-report")


def wait_for_executable(
    *,
    build: BuildProcess,
    deps_dir: Path,
    name: str,
    timeout_s: float,
    poll_interval_s: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Executable:
    """Poll a background build until it has produced the bench executable.

    Returns once the build exited successfully, preferring the path the build
    reported over a directory scan. Raises BuildError when the build fails and
    NotFoundError when nothing shows up within `timeout_s`.
    """
    deadline = clock() + timeout_s
    while True:
        rc = build.poll()
        if rc is not None:
            if rc != 0:
                raise BuildError(f"Build of bench {name!r} failed with exit code {rc}", build.diagnostics())
            reported = build.reported_executable()
            if reported is not None:
                exe = _reported(reported)
                if exe is not None:
                    return exe
            return locate_executable(deps_dir, name)

        if clock() >= deadline:
            build.terminate()
            raise NotFoundError(
                f"Timed out after {timeout_s:g}s waiting for the build of bench {name!r} to produce an executable"
            )
        sleep(poll_interval_s)
