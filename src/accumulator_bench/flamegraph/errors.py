from __future__ import annotations


class FlamegraphError(Exception):
    """Base class for every pipeline failure."""


class UsageError(FlamegraphError):
    """The benchmark name is missing or not usable."""


class BuildError(FlamegraphError):
    """The build tool failed to produce the benchmark target."""

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        base = super().__str__()
        if not self.diagnostics:
            return base
        return f"{base}\n{self.diagnostics}"


class NotFoundError(FlamegraphError, FileNotFoundError):
    """No executable matching the benchmark appeared."""


class ProfilerError(FlamegraphError):
    """The sampling profiler failed for a reason other than privilege."""


class ProfilerPermissionError(FlamegraphError, PermissionError):
    """The sampling profiler could not attach: insufficient privilege."""


class NoSamplesWarning(FlamegraphError, UserWarning):
    """The profiler ran but there is nothing to render.

    Raised (not merely warned) so the pipeline halts before rendering.
    """


class FilteredOutWarning(NoSamplesWarning):
    """Every folded stack was rejected by the stack filter."""


class RenderError(FlamegraphError):
    """The flamegraph renderer failed to produce an SVG."""


class ArtifactError(FlamegraphError, OSError):
    """An output directory or file could not be created or written."""
