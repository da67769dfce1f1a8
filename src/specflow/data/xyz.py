"""
Multi-frame XYZ coordinate files.
=================================

Layout of one frame::

    <atom count>
    <comment>
    <label> <x> <y> <z>      (atom count times)

Frames are concatenated without separators.  A line that parses as a bare
integer always opens a new frame; nothing else is used to find frame
boundaries, so frames of different sizes may share one file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Union

import numpy as np

from specflow.errors import FormatError

from .structures import Frame

__all__ = [
    "XYZTrajectory",
    "iter_frames",
    "read_xyz",
    "format_frames",
    "write_xyz",
    "default_comment",
]

COMMENT_PREFIX = "generated by specflow"


def default_comment(index: int) -> str:
    """Comment line for the ``index``-th (0-based) frame."""
    return f"{COMMENT_PREFIX}, Frame {index + 1}"


def _as_count(text: str) -> Optional[int]:
    stripped = text.strip()
    if not stripped:
        return None
    try:
        return int(stripped)
    except ValueError:
        return None


def iter_frames(lines: Iterable[str], source: Optional[Union[str, Path]] = None) -> Iterator[Frame]:
    """Lazily decode frames from an iterable of text lines."""

    count: Optional[int] = None
    comment = ""
    labels: List[str] = []
    coords: List[List[float]] = []
    expect_comment = False
    start_line = 0

    def finish() -> Frame:
        if len(labels) != count:
            raise FormatError(
                f"frame declares {count} atoms but has {len(labels)} atom records",
                path=source,
                line_number=start_line,
            )
        return Frame(tuple(labels), np.array(coords, dtype=float).reshape(-1, 3), comment)

    for number, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        value = _as_count(line)
        if expect_comment:
            expect_comment = False
            if value is None:
                comment = line.strip()
                continue
        if value is not None:
            if count is not None:
                yield finish()
            if value < 0:
                raise FormatError("negative atom count", path=source, line_number=number, content=line)
            count, comment, labels, coords = value, "", [], []
            expect_comment = True
            start_line = number
            continue
        if not line.strip():
            continue
        if count is None:
            raise FormatError("atom record before the first atom-count line", path=source, line_number=number, content=line)
        parts = line.split()
        if len(parts) < 4:
            raise FormatError("expected 'label x y z'", path=source, line_number=number, content=line)
        try:
            xyz = [float(v) for v in parts[1:4]]
        except ValueError:
            raise FormatError("non-numeric coordinate", path=source, line_number=number, content=line) from None
        labels.append(parts[0])
        coords.append(xyz)

    if count is not None:
        yield finish()


class XYZTrajectory:
    """Restartable lazy view over a multi-frame XYZ file.

    Every iteration reopens the file, so the object can be traversed any
    number of times without holding frames in memory.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def __iter__(self) -> Iterator[Frame]:
        with self.path.open("r", encoding="utf-8") as fh:
            yield from iter_frames(fh, source=self.path)

    def __repr__(self) -> str:
        return f"XYZTrajectory({str(self.path)!r})"

    def first(self) -> Frame:
        for frame in self:
            return frame
        raise FormatError("no frames found", path=self.path)


def read_xyz(path: Union[str, Path]) -> List[Frame]:
    return list(XYZTrajectory(path))


def format_frames(
    frames: Iterable[Frame],
    comment: Callable[[int], str] = default_comment,
) -> str:
    lines: List[str] = []
    for index, frame in enumerate(frames):
        lines.append(str(frame.atom_count))
        lines.append(comment(index))
        lines.extend(frame.atom_lines(precision=6))
    return "\n".join(lines) + ("\n" if lines else "")


def write_xyz(
    path: Union[str, Path],
    frames: Iterable[Frame],
    comment: Callable[[int], str] = default_comment,
) -> Path:
    """Write ``frames`` to ``path`` and return the path."""
    path = Path(path)
    path.write_text(format_frames(frames, comment), encoding="utf-8")
    return path
