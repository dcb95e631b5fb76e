"""
CLI: render folded stacks as a flamegraph SVG (optionally with a hot-frame report).

    python scripts/render_flamegraph.py flamegraph/stacks/accumulator.folded -o flamegraph/graphs/accumulator.svg --report
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from accumulator_bench.flamegraph.collapse import read_folded
from accumulator_bench.flamegraph.errors import NoSamplesWarning, RenderError
from accumulator_bench.flamegraph.render import RenderOptions, write_flamegraph
from accumulator_bench.flamegraph.report import write_report


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Render folded stacks to an SVG flame graph.")
    parser.add_argument("folded", type=Path, help="Folded stacks file (`f1;f2;f3 count` per line).")
    parser.add_argument("-o", "--out", type=Path, required=True, help="Output SVG path.")
    parser.add_argument("--title", default=None, help="Graph title (default: input file stem).")
    parser.add_argument("--width", type=int, default=1200)
    parser.add_argument("--renderer", choices=["builtin", "flamegraph.pl"], default="builtin")
    parser.add_argument("--flamegraph-cmd", default="flamegraph.pl")
    parser.add_argument("--report", action="store_true", help="Also write <out>.md with the hottest frames.")
    return parser.parse_args()


def main() -> int:
    """Entry point."""
    args = _parse_args()
    if not args.folded.is_file():
        raise SystemExit(f"Missing folded stacks file: {args.folded}")

    try:
        stacks = read_folded(args.folded)
    except ValueError as e:
        raise SystemExit(str(e))

    options = RenderOptions(
        title=args.title or args.folded.stem,
        width=args.width,
        renderer=args.renderer,
        flamegraph_cmd=args.flamegraph_cmd,
    )
    args.out.parent.mkdir(parents=True, exist_ok=True)
    try:
        write_flamegraph(stacks, args.out, options)
    except NoSamplesWarning as e:
        print(str(e), file=sys.stderr)
        return 3
    except RenderError as e:
        print(f"RenderError: {e}", file=sys.stderr)
        return 1

    if args.report:
        write_report(
            report_path=args.out.with_suffix(".md"),
            bench_name=args.folded.stem,
            stacks=stacks,
            svg_path=args.out,
            filter_desc="as folded",
            commands={"render": args.renderer},
        )
    print(args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
