"""
CLI: fold a raw dtrace stacks file into folded stacks.

Useful for re-filtering an existing capture without re-running the benchmark:

    python scripts/collapse_stacks.py flamegraph/stacks/accumulator.stacks --filter closure -o flamegraph/stacks/accumulator.folded

Writes to stdout when `-o` is omitted.
"""

from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path

from accumulator_bench.flamegraph.collapse import collapse_stacks, format_folded, write_folded
from accumulator_bench.flamegraph.filters import apply_filter, build_filter


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Fold dtrace ustack() output into folded stacks.")
    parser.add_argument("stacks", type=Path, help="Raw stacks file written by dtrace -o.")
    parser.add_argument("-o", "--out", type=Path, default=None, help="Output path (default: stdout).")
    parser.add_argument("--filter", dest="marker", default=None, help="Keep stacks containing this substring.")
    parser.add_argument("--filter-regex", default=None, help="Keep stacks where a frame matches this regex.")
    parser.add_argument("--min-depth", type=int, default=None)
    parser.add_argument("--max-depth", type=int, default=None)
    return parser.parse_args()


def main() -> int:
    """Entry point."""
    args = _parse_args()
    if not args.stacks.is_file():
        raise SystemExit(f"Missing stacks file: {args.stacks}")

    try:
        predicate = build_filter(
            marker=args.marker, regex=args.filter_regex, min_depth=args.min_depth, max_depth=args.max_depth
        )
    except (ValueError, re.error) as e:
        raise SystemExit(f"Invalid filter: {e}")

    with args.stacks.open(encoding="utf-8", errors="replace") as f:
        folded = collapse_stacks(f)
    if not folded:
        print(f"No stack samples in {args.stacks}", file=sys.stderr)
        return 3
    kept = apply_filter(folded, predicate)
    if not kept:
        print(f"Filter {predicate.describe()!r} rejected all {len(folded)} stacks", file=sys.stderr)
        return 3

    if args.out is None:
        sys.stdout.write(format_folded(kept))
    else:
        write_folded(args.out, kept)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
