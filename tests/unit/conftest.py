from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

# dtrace `ustack()` aggregation output for the hash_bench scenario: 3 samples of
# main;hash;sha256 and 2 of main;hash;blake2 (leaf first, count last).
HASH_BENCH_STACKS = """
CPU     ID                    FUNCTION:NAME
  0      2                             :END

              sha256+0x1f
              hash+0x10
              main+0x8
                3

              blake2+0x2c
              hash+0x14
              main+0x8
                2
"""

# cargo stand-in: knows only the `hash_bench` bench target, writes a trivial
# executable into <target-dir>/release/deps and reports it in cargo's JSON format.
FAKE_CARGO_BODY = r"""
name=""
target="$(pwd)/target"
while [ $# -gt 0 ]; do
  if [ "$1" = "--bench" ]; then name="$2"; shift; fi
  if [ "$1" = "--target-dir" ]; then target="$2"; shift; fi
  shift
done
if [ "$name" != "hash_bench" ]; then
  echo "error: no bench target named \`$name\`" >&2
  exit 101
fi
deps="$target/release/deps"
mkdir -p "$deps"
exe="$deps/$name-0123456789abcdef"
printf '#!/bin/sh\nexit 0\n' > "$exe"
chmod +x "$exe"
printf '{"reason":"compiler-artifact","target":{"name":"%s","kind":["bench"]},"executable":"%s"}\n' "$name" "$exe"
printf '{"reason":"build-finished","success":true}\n'
exit 0
"""


@pytest.fixture
def fake_bin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A directory prepended to PATH for fake external tools."""
    bin_dir = tmp_path / "fake-bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


@pytest.fixture
def write_tool(fake_bin: Path) -> Callable[[str, str], Path]:
    def _write(name: str, body: str) -> Path:
        p = fake_bin / name
        p.write_text("#!/bin/sh\n" + body)
        p.chmod(0o755)
        return p

    return _write


def _fake_dtrace_body(stacks_text: str, *, exit_code: int, stderr: str, write_output: bool) -> str:
    lines = [
        'out=""',
        'while [ $# -gt 0 ]; do',
        '  if [ "$1" = "-o" ]; then out="$2"; shift; fi',
        "  shift",
        "done",
    ]
    if write_output and stacks_text:
        lines += ['cat > "$out" <<\'STACKS_EOF\'', stacks_text.strip("\n"), "STACKS_EOF"]
    elif write_output:
        lines.append(': > "$out"')
    if stderr:
        lines.append(f"echo '{stderr}' >&2")
    lines.append(f"exit {exit_code}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def hash_bench_stacks() -> str:
    return HASH_BENCH_STACKS


@pytest.fixture
def fake_dtrace(write_tool: Callable[[str, str], Path]) -> Callable[..., Path]:
    """Install a dtrace stand-in that writes the given text to its `-o` path."""

    def _install(stacks_text: str, *, exit_code: int = 0, stderr: str = "", write_output: bool = True) -> Path:
        body = _fake_dtrace_body(stacks_text, exit_code=exit_code, stderr=stderr, write_output=write_output)
        return write_tool("dtrace", body)

    return _install


@pytest.fixture
def fake_cargo(write_tool: Callable[[str, str], Path]) -> Path:
    """Install a cargo stand-in that only knows the `hash_bench` bench target."""
    return write_tool("cargo", FAKE_CARGO_BODY)
