"""
Structural codecs used as stage boundaries.

Each module reads and writes one family of engine files: multi-frame XYZ
coordinates, AmberTools topology/trajectory pairs, MOPAC batch jobs and ORCA
jobs/outputs.
"""

from .structures import Frame, Topology, Trajectory  # noqa: F401
from .xyz import XYZTrajectory, read_xyz, write_xyz  # noqa: F401
from .amber import MDSettings, parse_topology, parse_trajectory  # noqa: F401
from .mopac import EnergyRecord, parse_energy, rank_energies  # noqa: F401
from .orca import FrequencyReport, JobVariant, QuantumTask, parse_frequencies  # noqa: F401
