"""
ORCA job files and frequency sections.
======================================

Three job variants share one atom-block substitution and differ only in the
method line and in the solvent/excitation blocks:

``GROUND_STATE``
    geometry optimisation, optional numerical frequencies
``EXCITED_STATE``
    TDDFT excited-state optimisation, optional numerical frequencies
``EXCITED_STATE_REFINE``
    STEOM-DLPNO-CCSD single point on the excited-state geometry

The frequency section of an output looks like::

    -----------------------
    VIBRATIONAL FREQUENCIES
    -----------------------

       0:         0.00 cm**-1
       ...
       6:       -15.30 cm**-1 ***imaginary mode***
       7:       200.10 cm**-1

After the header exactly two lines are skipped, then indexed records are
read until a blank line closes the section.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from specflow.errors import FormatError, MissingSectionError

from .structures import Frame

__all__ = [
    "FREQUENCY_HEADER",
    "JobVariant",
    "QuantumTask",
    "FrequencyReport",
    "render_orca_input",
    "write_orca_input",
    "parse_frequencies",
    "parse_frequency_file",
]

FREQUENCY_HEADER = "VIBRATIONAL FREQUENCIES"
FREQUENCY_KEYWORD = "numfreq"

_RECORD_RE = re.compile(r"^\s*\d+:\s+(-?\d+\.\d+)\s+cm\*\*-1")

PathLike = Union[str, Path]


class JobVariant(str, Enum):
    GROUND_STATE = "GroundState"
    EXCITED_STATE = "ExcitedState"
    EXCITED_STATE_REFINE = "ExcitedStateRefine"


@dataclass
class QuantumTask:
    """Everything needed to render one ORCA job file."""

    variant: JobVariant
    method: str
    keywords: str = ""
    memory_mb: int = 8192
    core_count: int = 1
    charge: int = 0
    multiplicity: int = 1
    frequency: bool = False
    solvent: Optional[str] = "water"
    nroots: int = 10

    @property
    def method_line(self) -> str:
        tokens = [self.method]
        if self.frequency:
            tokens.append(FREQUENCY_KEYWORD)
        if self.keywords:
            tokens.append(self.keywords)
        return "! " + " ".join(tokens)


def _solvent_block(task: QuantumTask) -> List[str]:
    if not task.solvent:
        return []
    return ["%cpcm", "smd true", f'SMDsolvent "{task.solvent}"', "end"]


def _excitation_block(task: QuantumTask) -> List[str]:
    if task.variant is JobVariant.EXCITED_STATE:
        return ["%tddft", f"nroots {task.nroots}", "TDA false", "end"]
    if task.variant is JobVariant.EXCITED_STATE_REFINE:
        return ["%mdci", f"nroots {task.nroots}", "end"]
    return []


def render_orca_input(task: QuantumTask, atom_lines: Sequence[str]) -> str:
    lines = [
        task.method_line,
        f"%maxcore {task.memory_mb}",
        f"%pal nprocs {task.core_count} end",
    ]
    lines.extend(_solvent_block(task))
    lines.extend(_excitation_block(task))
    lines.append(f"* xyz {task.charge} {task.multiplicity}")
    lines.extend(line.strip() for line in atom_lines if line.strip())
    lines.append("*")
    return "\n".join(lines) + "\n"


def write_orca_input(path: PathLike, task: QuantumTask, frame: Frame) -> Path:
    path = Path(path)
    path.write_text(render_orca_input(task, frame.atom_lines(precision=6)), encoding="utf-8")
    return path


# -- frequency section -------------------------------------------------------


@dataclass(frozen=True)
class FrequencyReport:
    frequencies: Tuple[float, ...] = field(default_factory=tuple)
    source: Optional[Path] = None

    @property
    def negative(self) -> Tuple[float, ...]:
        return tuple(f for f in self.frequencies if f < 0)

    @property
    def has_negative(self) -> bool:
        return any(f < 0 for f in self.frequencies)

    @property
    def minimum(self) -> Optional[float]:
        return min(self.frequencies) if self.frequencies else None

    def __len__(self) -> int:
        return len(self.frequencies)


def parse_frequencies(lines: Iterable[str], source: Optional[PathLike] = None) -> FrequencyReport:
    """Extract the first frequency section from an ORCA output.

    A blank line closes the section, except the one blank line that follows
    a note printed before the first record (newer ORCA releases print a
    scaling-factor note there).
    """

    iterator = iter(lines)
    for line in iterator:
        if FREQUENCY_HEADER in line:
            break
    else:
        raise MissingSectionError(f"'{FREQUENCY_HEADER}' section not found", path=source)

    for skipped in range(2):
        if next(iterator, None) is None:
            raise FormatError(
                f"output ends {skipped} line(s) after '{FREQUENCY_HEADER}'; expected 2 header lines",
                path=source,
            )

    values: List[float] = []
    after_note = False
    for line in iterator:
        match = _RECORD_RE.match(line)
        if match:
            values.append(float(match.group(1)))
            after_note = False
        elif line.strip():
            after_note = not values
        elif after_note:
            after_note = False
        else:
            break
    return FrequencyReport(tuple(values), Path(source) if source is not None else None)


def parse_frequency_file(path: PathLike) -> FrequencyReport:
    path = Path(path)
    with path.open("r", encoding="utf-8", errors="replace") as fh:
        return parse_frequencies(fh, source=path)
