"""
MOPAC batch job files and outputs.
==================================

One job file is written per trajectory frame::

    PM6-DH+ precise
    molecule
    All coordinates are Cartesian
    C   0.12345678 1  -1.23456789 1   2.34567890 1
    ...

The ``1`` after each coordinate flags that axis for optimisation.  The
energy of a finished job is read from the ``FINAL HEAT OF FORMATION`` line
of its output, and the frame index comes from the file name
(``Frame_<n>.out``), never from the content.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from specflow.errors import FormatError

from .structures import Frame

__all__ = [
    "DEFAULT_HEADER",
    "EnergyRecord",
    "job_stem",
    "frame_index_from_path",
    "strip_label",
    "render_mopac_input",
    "write_mopac_input",
    "parse_energy",
    "parse_energy_text",
    "rank_energies",
    "read_mopac_geometry",
]

DEFAULT_HEADER = ("PM6-DH+ precise", "molecule", "All coordinates are Cartesian")
ENERGY_MARKER = "FINAL HEAT OF FORMATION"

_ENERGY_RE = re.compile(r"FINAL HEAT OF FORMATION[ \t]*=[ \t]*(\S+)[ \t]*(\S+)?")
_ORDINAL_RE = re.compile(r"(\d+)")
_TRAILING_DIGITS_RE = re.compile(r"\d+$")

PathLike = Union[str, Path]


@dataclass(frozen=True)
class EnergyRecord:
    frame_index: int
    energy: float
    unit: str = "KCAL/MOL"
    source: Optional[Path] = None


def job_stem(frame_index: int) -> str:
    return f"Frame_{frame_index}"


def frame_index_from_path(path: PathLike) -> int:
    path = Path(path)
    match = _ORDINAL_RE.search(path.stem)
    if match is None:
        raise FormatError("file name carries no frame ordinal", path=path)
    return int(match.group(1))


def strip_label(label: str) -> str:
    """``C12`` -> ``C``; numbering suffixes are not element symbols."""
    return _TRAILING_DIGITS_RE.sub("", label.strip())


def render_mopac_input(frame: Frame, header: Sequence[str] = DEFAULT_HEADER) -> str:
    if len(header) != 3:
        raise ValueError(f"MOPAC header must have exactly 3 lines, got {len(header)}")
    lines = list(header)
    for label, (x, y, z) in zip(frame.labels, frame.coordinates):
        lines.append(f"{strip_label(label):<2} {x:10.8f} 1 {y:10.8f} 1 {z:10.8f} 1")
    return "\n".join(lines) + "\n"


def write_mopac_input(path: PathLike, frame: Frame, header: Sequence[str] = DEFAULT_HEADER) -> Path:
    path = Path(path)
    path.write_text(render_mopac_input(frame, header), encoding="utf-8")
    return path


def parse_energy_text(text: str, frame_index: int, source: Optional[PathLike] = None) -> EnergyRecord:
    match = _ENERGY_RE.search(text)
    if match is None:
        raise FormatError(f"'{ENERGY_MARKER}' marker not found", path=source)
    token = match.group(1)
    try:
        energy = float(token)
    except ValueError:
        raise FormatError(
            f"value after '{ENERGY_MARKER}' is not numeric", path=source, content=match.group(0)
        ) from None
    unit = match.group(2) or "KCAL/MOL"
    return EnergyRecord(frame_index, energy, unit, Path(source) if source is not None else None)


def parse_energy(path: PathLike) -> EnergyRecord:
    path = Path(path)
    text = path.read_text(encoding="utf-8", errors="replace")
    return parse_energy_text(text, frame_index_from_path(path), source=path)


def rank_energies(records: Iterable[EnergyRecord]) -> EnergyRecord:
    """Return the record with the algebraically smallest energy (ties: lowest frame)."""
    ordered = sorted(records, key=lambda rec: (rec.energy, rec.frame_index))
    if not ordered:
        raise ValueError("cannot rank an empty set of energy records")
    return ordered[0]


def read_mopac_geometry(path: PathLike, header_lines: int = len(DEFAULT_HEADER)) -> Frame:
    """Read the atom block of a job file back into a frame."""
    path = Path(path)
    labels = []
    coords = []
    lines = path.read_text(encoding="utf-8").splitlines()
    for number, line in enumerate(lines[header_lines:], start=header_lines + 1):
        parts = line.split()
        if not parts:
            continue
        if len(parts) < 7:
            raise FormatError("expected 'label x f y f z f'", path=path, line_number=number, content=line)
        try:
            coords.append([float(parts[1]), float(parts[3]), float(parts[5])])
        except ValueError:
            raise FormatError("non-numeric coordinate", path=path, line_number=number, content=line) from None
        labels.append(parts[0])
    if not labels:
        raise FormatError("job file has no atom records", path=path)
    return Frame(tuple(labels), coords)
