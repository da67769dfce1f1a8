"""
AmberTools file glue: topology (prmtop), ASCII trajectory (mdcrd) and the
small input decks the conformer search writes for ``tleap`` and ``sander``.
===========================================================================

Topology
    Atom labels live between the ``%FLAG ATOM_NAME`` header and the
    ``%FLAG CHARGE`` header that follows it.  The ``%FORMAT(20a4)`` line
    declares fixed four-character fields; names are cut on those fields
    and stripped, falling back to whitespace splitting when no width is
    declared.

Trajectory
    A title record followed by a stream of floats with no meaningful line
    structure.  Titles are recognised by prefix, never by position; the
    remaining tokens are cut into frames of ``atom_count * 3`` values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from specflow.errors import FormatError

from .structures import Topology, Trajectory

__all__ = [
    "ATOM_NAME_FLAG",
    "CHARGE_FLAG",
    "MDSettings",
    "parse_topology",
    "parse_topology_text",
    "parse_trajectory",
    "parse_trajectory_text",
    "fix_prepin",
    "render_tleap_script",
    "render_md_input",
]

ATOM_NAME_FLAG = "%FLAG ATOM_NAME"
CHARGE_FLAG = "%FLAG CHARGE"
DEFAULT_TITLE_PREFIXES: Tuple[str, ...] = ("INT",)

_FORMAT_RE = re.compile(r"^%FORMAT\(\s*\d+\s*a\s*(\d+)\s*\)", re.IGNORECASE)
_PREPIN_RESIDUE_RE = re.compile(r"\*\*\*\s+INT")

PathLike = Union[str, Path]


def parse_topology_text(text: str, source: Optional[PathLike] = None) -> Topology:
    lines = text.splitlines()
    start = next((i for i, line in enumerate(lines) if line.strip().startswith(ATOM_NAME_FLAG)), None)
    if start is None:
        raise FormatError(f"'{ATOM_NAME_FLAG}' section not found", path=source)
    end = next((i for i in range(start + 1, len(lines)) if lines[i].strip().startswith(CHARGE_FLAG)), None)
    if end is None:
        raise FormatError(f"'{CHARGE_FLAG}' section after '{ATOM_NAME_FLAG}' not found", path=source)

    width: Optional[int] = None
    labels: List[str] = []
    for line in lines[start + 1 : end]:
        stripped = line.strip()
        if stripped.startswith("%FORMAT"):
            match = _FORMAT_RE.match(stripped)
            width = int(match.group(1)) if match else None
            continue
        if stripped.startswith("%COMMENT") or not stripped:
            continue
        if width:
            body = line.rstrip("\r\n")
            labels.extend(
                field.strip() for field in (body[i : i + width] for i in range(0, len(body), width)) if field.strip()
            )
        else:
            labels.extend(stripped.split())

    if not labels:
        raise FormatError("atom name section is empty", path=source)
    return Topology(tuple(labels))


def parse_topology(path: PathLike) -> Topology:
    path = Path(path)
    return parse_topology_text(path.read_text(encoding="utf-8", errors="replace"), source=path)


def parse_trajectory_text(
    text: str,
    atom_count: int,
    *,
    title_prefixes: Sequence[str] = DEFAULT_TITLE_PREFIXES,
    source: Optional[PathLike] = None,
) -> np.ndarray:
    """Return an ``(n_frames, atom_count, 3)`` array decoded from ``text``."""

    if atom_count <= 0:
        raise FormatError(f"atom count must be positive, got {atom_count}", path=source)

    values: List[float] = []
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        if any(stripped.startswith(prefix) for prefix in title_prefixes):
            continue
        tokens = stripped.split()
        try:
            row = [float(tok) for tok in tokens]
        except ValueError:
            raise FormatError("non-numeric token in coordinate stream", path=source, line_number=number, content=line) from None
        values.extend(row)

    per_frame = atom_count * 3
    if len(values) % per_frame:
        raise FormatError(
            f"{len(values)} coordinates is not a multiple of {per_frame} "
            f"({atom_count} atoms); trajectory is corrupt",
            path=source,
        )
    return np.asarray(values, dtype=float).reshape(-1, atom_count, 3)


def parse_trajectory(
    path: PathLike,
    topology: Topology,
    *,
    title_prefixes: Sequence[str] = DEFAULT_TITLE_PREFIXES,
) -> Trajectory:
    path = Path(path)
    coords = parse_trajectory_text(
        path.read_text(encoding="utf-8", errors="replace"),
        topology.atom_count,
        title_prefixes=title_prefixes,
        source=path,
    )
    return Trajectory(topology, coords)


# -- conformer-search input decks ------------------------------------------


@dataclass
class MDSettings:
    """High-temperature sampling run used as the conformer search."""

    title: str = "1ns simulation at 1000K"
    steps: int = 500_000
    timestep: float = 0.002
    temperature: float = 1000.0
    frame_stride: int = 5000
    cutoff: float = 12.0
    gamma_ln: float = 2.0


def fix_prepin(text: str) -> str:
    """Collapse the ``***  INT`` residue line antechamber writes and normalise newlines."""
    text = _PREPIN_RESIDUE_RE.sub("INT", text)
    return text.replace("\r\n", "\n").replace("\r", "\n")


def render_tleap_script(stem: str, force_field: str = "leaprc.gaff") -> str:
    return (
        f"source {force_field}\n"
        f"loadamberprep {stem}.prepin\n"
        f"loadamberparams {stem}.frcmod\n"
        f"saveamberparm INT {stem}.prmtop {stem}.inpcrd\n"
        "quit\n"
    )


def render_md_input(settings: MDSettings) -> str:
    # ntxo/ioutfm = ASCII restart and trajectory
    return (
        f"{settings.title}\n"
        "&cntrl\n"
        f"imin=0,nstlim={settings.steps},dt={settings.timestep},ntpr=50,ntwr=100,ntwx={settings.frame_stride},ntc=2,\n"
        f"tempi={settings.temperature:g},temp0={settings.temperature:g},ntt=3,ntb=0,"
        f"cut={settings.cutoff},gamma_ln={settings.gamma_ln},igb=0,\n"
        "ntxo=1,\n"
        "ioutfm=0,\n"
        "/\n"
    )
