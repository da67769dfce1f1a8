from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from specflow.data.amber import MDSettings
from specflow.data.mopac import DEFAULT_HEADER
from specflow.data.orca import JobVariant, QuantumTask

ENGINES = ("obabel", "amber", "mopac", "orca")


def _default_core_count() -> int:
    return max(1, os.cpu_count() or 1)


def _default_success_codes() -> Dict[str, Tuple[int, ...]]:
    return {name: (0,) for name in ENGINES}


@dataclass
class GeometryConfig:
    """Settings for SMILES → 3D structure embedding."""

    force_field: str = "MMFF94"
    max_iterations: int = 500
    embed_tries: int = 10
    random_seed: Optional[int] = 42
    optimize: bool = True
    use_etkdg: bool = True
    add_hydrogens: bool = True


@dataclass
class QuantumTaskConfig:
    """Method line and root count of one ORCA job variant."""

    method: str
    keywords: str = ""
    nroots: int = 10


@dataclass
class PipelineConfig:
    """Project, engine and resource settings for one pipeline run."""

    project_name: str = ""
    project_path: Path = Path(".")
    mopac_engine_path: str = "mopac"
    orca_engine_path: str = "orca"
    obabel_path: str = "obabel"
    amber_shell: Tuple[str, ...] = ("bash", "-lc")
    amber_setup: str = ""
    batch_concurrency: int = 4
    core_count: int = field(default_factory=_default_core_count)
    memory_mb: int = 8192
    net_charge: int = 0
    multiplicity: int = 1
    ground_state_frequency: bool = True
    excited_state_frequency: bool = True
    solvent: Optional[str] = "water"
    mopac_header: Tuple[str, ...] = DEFAULT_HEADER
    success_codes: Dict[str, Tuple[int, ...]] = field(default_factory=_default_success_codes)
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    md: MDSettings = field(default_factory=MDSettings)
    ground_state: QuantumTaskConfig = field(
        default_factory=lambda: QuantumTaskConfig(
            method="r2SCAN-3c opt",
            keywords="defgrid3 noautostart miniprint nopop",
        )
    )
    excited_state: QuantumTaskConfig = field(
        default_factory=lambda: QuantumTaskConfig(
            method="PBE0 def2-SV(P) def2/J RIJCOSX tightSCF opt",
            keywords="defgrid3 def2-SVP/C noautostart miniprint nopop",
            nroots=10,
        )
    )
    excited_state_refine: QuantumTaskConfig = field(
        default_factory=lambda: QuantumTaskConfig(
            method="STEOM-DLPNO-CCSD RIJK def2-TZVP def2/JK def2-TZVP/C tightSCF",
            keywords="noautostart nopop",
            nroots=5,
        )
    )

    def __post_init__(self) -> None:
        # values arriving from YAML are plain str/list/dict
        self.project_path = Path(self.project_path)
        self.amber_shell = tuple(self.amber_shell)
        self.mopac_header = tuple(self.mopac_header)
        codes = _default_success_codes()
        for name, values in dict(self.success_codes or {}).items():
            codes[name] = tuple(int(v) for v in values)
        self.success_codes = codes
        if isinstance(self.geometry, Mapping):
            self.geometry = GeometryConfig(**self.geometry)
        if isinstance(self.md, Mapping):
            self.md = MDSettings(**self.md)
        for name in ("ground_state", "excited_state", "excited_state_refine"):
            value = getattr(self, name)
            if isinstance(value, Mapping):
                setattr(self, name, QuantumTaskConfig(**value))

    def validate(self) -> None:
        if not self.project_name.strip():
            raise ValueError("project_name must not be empty.")
        if not str(self.project_path).strip():
            raise ValueError("project_path must not be empty.")
        if self.batch_concurrency < 1:
            raise ValueError(f"batch_concurrency must be >= 1, got {self.batch_concurrency}.")
        if self.core_count < 1:
            raise ValueError(f"core_count must be >= 1, got {self.core_count}.")
        if self.memory_mb < 1:
            raise ValueError(f"memory_mb must be >= 1, got {self.memory_mb}.")
        if len(self.mopac_header) != 3:
            raise ValueError("mopac_header must contain exactly 3 lines.")
        if not self.amber_shell:
            raise ValueError("amber_shell must name a shell executable.")
        unknown = set(self.success_codes) - set(ENGINES)
        if unknown:
            raise ValueError(f"success_codes has unknown engines: {sorted(unknown)}")

    def task(self, variant: JobVariant) -> QuantumTask:
        """Render-ready ORCA task for ``variant`` using this run's resources."""
        if variant is JobVariant.GROUND_STATE:
            method, frequency = self.ground_state, self.ground_state_frequency
        elif variant is JobVariant.EXCITED_STATE:
            method, frequency = self.excited_state, self.excited_state_frequency
        else:
            method, frequency = self.excited_state_refine, False
        return QuantumTask(
            variant=variant,
            method=method.method,
            keywords=method.keywords,
            memory_mb=self.memory_mb,
            core_count=self.core_count,
            charge=self.net_charge,
            multiplicity=self.multiplicity,
            frequency=frequency,
            solvent=self.solvent,
            nroots=method.nroots,
        )

    def frequency_enabled(self, variant: JobVariant) -> bool:
        if variant is JobVariant.GROUND_STATE:
            return self.ground_state_frequency
        if variant is JobVariant.EXCITED_STATE:
            return self.excited_state_frequency
        return False

    def summary_lines(self) -> Tuple[str, ...]:
        return (
            f"Project name: {self.project_name}",
            f"Project path: {self.project_path}",
            f"MOPAC executable: {self.mopac_engine_path}",
            f"ORCA executable: {self.orca_engine_path}",
            f"MOPAC parallel jobs: {self.batch_concurrency}",
            f"Cores: {self.core_count}",
            f"Memory per core (MB): {self.memory_mb}",
            f"Net charge: {self.net_charge}",
            f"Ground-state frequencies: {'yes' if self.ground_state_frequency else 'no'}",
            f"Excited-state frequencies: {'yes' if self.excited_state_frequency else 'no'}",
        )
