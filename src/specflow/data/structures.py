"""Atom/coordinate containers passed between codecs and pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

import numpy as np

__all__ = ["Topology", "Frame", "Trajectory"]


@dataclass(frozen=True)
class Topology:
    """Atom labels in the canonical order shared by every downstream file."""

    labels: Tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", tuple(self.labels))

    @property
    def atom_count(self) -> int:
        return len(self.labels)


@dataclass
class Frame:
    labels: Tuple[str, ...]
    coordinates: np.ndarray
    comment: str = ""

    def __post_init__(self) -> None:
        self.labels = tuple(self.labels)
        self.coordinates = np.asarray(self.coordinates, dtype=float).reshape(-1, 3)
        if len(self.labels) != self.coordinates.shape[0]:
            raise ValueError(
                f"Frame has {len(self.labels)} labels but {self.coordinates.shape[0]} coordinate rows."
            )

    @property
    def atom_count(self) -> int:
        return len(self.labels)

    def atom_lines(self, precision: int = 6) -> list:
        """``label x y z`` rows, as embedded in engine input files."""
        return [
            f"{label} {x:.{precision}f} {y:.{precision}f} {z:.{precision}f}"
            for label, (x, y, z) in zip(self.labels, self.coordinates)
        ]


@dataclass
class Trajectory:
    """All frames of one molecule as an ``(n_frames, atom_count, 3)`` array."""

    topology: Topology
    coordinates: np.ndarray

    def __post_init__(self) -> None:
        atom_count = self.topology.atom_count
        self.coordinates = np.asarray(self.coordinates, dtype=float).reshape(-1, atom_count, 3)

    def __len__(self) -> int:
        return int(self.coordinates.shape[0])

    def __iter__(self) -> Iterator[Frame]:
        return self.frames()

    def frames(self, comments: Sequence[str] = ()) -> Iterator[Frame]:
        for index, coords in enumerate(self.coordinates):
            comment = comments[index] if index < len(comments) else ""
            yield Frame(self.topology.labels, coords, comment)
