from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Protocol

import attrs

from .model import FoldedStack


class StackFilter(Protocol):
    """Pass/reject predicate over one folded stack."""

    def __call__(self, stack: FoldedStack) -> bool: ...

    def describe(self) -> str: ...


@attrs.define(frozen=True, slots=True)
class AcceptAll:
    def __call__(self, stack: FoldedStack) -> bool:
        return True

    def describe(self) -> str:
        return "none"


@attrs.define(frozen=True, slots=True)
class SubstringFilter:
    """Keep stacks whose folded frame path contains `marker`."""

    marker: str = attrs.field()

    @marker.validator
    def _check_marker(self, _attribute: attrs.Attribute, value: str) -> None:
        if not value:
            raise ValueError("filter marker must be non-empty")

    def __call__(self, stack: FoldedStack) -> bool:
        return self.marker in ";".join(stack.frames)

    def describe(self) -> str:
        return f"substring:{self.marker}"


@attrs.define(frozen=True, slots=True)
class RegexFilter:
    """Keep stacks where any frame matches `pattern` (re.search)."""

    pattern: str
    _compiled: re.Pattern[str] = attrs.field(init=False, repr=False, eq=False)

    def __attrs_post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def __call__(self, stack: FoldedStack) -> bool:
        return any(self._compiled.search(f) for f in stack.frames)

    def describe(self) -> str:
        return f"regex:{self.pattern}"


@attrs.define(frozen=True, slots=True)
class DepthFilter:
    """Keep stacks whose depth lies within [min_depth, max_depth]."""

    min_depth: int | None = None
    max_depth: int | None = None

    def __call__(self, stack: FoldedStack) -> bool:
        if self.min_depth is not None and stack.depth < self.min_depth:
            return False
        if self.max_depth is not None and stack.depth > self.max_depth:
            return False
        return True

    def describe(self) -> str:
        lo = "" if self.min_depth is None else str(self.min_depth)
        hi = "" if self.max_depth is None else str(self.max_depth)
        return f"depth:{lo}..{hi}"


@attrs.define(frozen=True, slots=True)
class AllOf:
    filters: tuple[StackFilter, ...]

    def __call__(self, stack: FoldedStack) -> bool:
        return all(f(stack) for f in self.filters)

    def describe(self) -> str:
        return " & ".join(f.describe() for f in self.filters)


def apply_filter(stacks: Iterable[FoldedStack], predicate: StackFilter) -> list[FoldedStack]:
    """Return the stacks `predicate` accepts, preserving order and counts."""
    return [s for s in stacks if predicate(s)]


def build_filter(
    *,
    marker: str | None = None,
    regex: str | None = None,
    min_depth: int | None = None,
    max_depth: int | None = None,
) -> StackFilter:
    """Compose the configured predicates; no predicate at all accepts everything."""
    parts: list[StackFilter] = []
    if marker:
        parts.append(SubstringFilter(marker))
    if regex:
        parts.append(RegexFilter(regex))
    if min_depth is not None or max_depth is not None:
        if min_depth is not None and max_depth is not None and min_depth > max_depth:
            raise ValueError(f"min_depth ({min_depth}) exceeds max_depth ({max_depth})")
        parts.append(DepthFilter(min_depth=min_depth, max_depth=max_depth))
    return _combine(parts)


def _combine(parts: Sequence[StackFilter]) -> StackFilter:
    if not parts:
        return AcceptAll()
    if len(parts) == 1:
        return parts[0]
    return AllOf(tuple(parts))
