"""
Error taxonomy shared by the codecs, the engine bindings and the pipeline.
==========================================================================

Every error carries enough context (stage, artifact path, underlying cause)
to diagnose a failed run without re-running the external engines.  The
pipeline fills in ``stage`` when an error escapes one of its stages.

A negative-frequency rejection is *not* an error; it is reported through
``RunStatus.HALTED`` on the pipeline run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

__all__ = [
    "SpecflowError",
    "MissingArtifactError",
    "AmbiguousArtifactError",
    "FormatError",
    "MissingSectionError",
    "ProcessLaunchError",
    "ProcessExitError",
    "BatchJobError",
    "StructureError",
]

PathLike = Union[str, Path]


class SpecflowError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str, *, path: Optional[PathLike] = None, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None
        self.stage = stage

    def __str__(self) -> str:
        parts = []
        if self.stage:
            parts.append(f"[{self.stage}]")
        parts.append(self.message)
        if self.path is not None:
            parts.append(f"({self.path})")
        return " ".join(parts)


class MissingArtifactError(SpecflowError):
    """A file required at stage entry does not exist."""


class AmbiguousArtifactError(SpecflowError):
    """Zero or several files match where exactly one is required."""

    def __init__(
        self,
        message: str,
        candidates: Iterable[PathLike] = (),
        *,
        path: Optional[PathLike] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.candidates = [Path(c) for c in candidates]
        if self.candidates:
            names = ", ".join(c.name for c in self.candidates)
            message = f"{message}: {names}"
        super().__init__(message, path=path, stage=stage)


class FormatError(SpecflowError):
    """File content does not follow the expected grammar."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[PathLike] = None,
        line_number: Optional[int] = None,
        content: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.line_number = line_number
        self.content = content
        if line_number is not None:
            message = f"{message} at line {line_number}"
        if content is not None:
            message = f"{message}: {content.strip()!r}"
        super().__init__(message, path=path, stage=stage)


class MissingSectionError(FormatError):
    """A required section header was never found."""


class ProcessLaunchError(SpecflowError):
    """An external executable could not be started."""

    def __init__(self, executable: str, cause: BaseException, *, stage: Optional[str] = None) -> None:
        self.executable = executable
        self.cause = cause
        super().__init__(f"cannot launch '{executable}': {cause}", stage=stage)


class ProcessExitError(SpecflowError):
    """An external program finished with an exit status its binding rejects."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        *,
        path: Optional[PathLike] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        super().__init__(
            f"'{' '.join(self.command)}' exited with status {returncode}",
            path=path,
            stage=stage,
        )


class BatchJobError(SpecflowError):
    """One or more batch jobs failed after the whole batch finished."""

    def __init__(self, failures: Sequence[object], *, path: Optional[PathLike] = None, stage: Optional[str] = None) -> None:
        self.failures = list(failures)
        frames = ", ".join(str(getattr(job, "frame_index", job)) for job in self.failures)
        super().__init__(f"{len(self.failures)} batch job(s) failed (frames: {frames})", path=path, stage=stage)


class StructureError(SpecflowError):
    """The initial 3-D structure could not be generated."""
