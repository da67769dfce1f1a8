"""SMILES → embedded 3-D structure (V3000 mol block) with RDKit."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from rdkit import Chem
from rdkit.Chem import AllChem

from .config import GeometryConfig

logger = logging.getLogger(__name__)


@dataclass
class GeometryResult:
    smiles: str
    success: bool
    mol_block: Optional[str] = None
    mol: Optional[Any] = None
    energy: Optional[float] = None
    message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _embed(mol: Any, config: GeometryConfig) -> int:
    if config.use_etkdg:
        params = AllChem.ETKDGv3()
        params.maxIterations = int(config.max_iterations)
        status = -1
        for attempt in range(max(1, config.embed_tries)):
            if config.random_seed is not None:
                params.randomSeed = int(config.random_seed) + attempt
            status = AllChem.EmbedMolecule(mol, params)
            if status == 0:
                return status
        return status
    seed = config.random_seed if config.random_seed is not None else -1
    return AllChem.EmbedMolecule(mol, maxAttempts=max(1, config.embed_tries), randomSeed=seed)


def _optimize(mol: Any, config: GeometryConfig) -> Optional[float]:
    name = config.force_field.upper()
    if name.startswith("MMFF") and AllChem.MMFFHasAllMoleculeParams(mol):
        variant = "MMFF94s" if name == "MMFF94S" else "MMFF94"
        AllChem.MMFFOptimizeMolecule(mol, mmffVariant=variant, maxIters=config.max_iterations)
        props = AllChem.MMFFGetMoleculeProperties(mol, mmffVariant=variant)
        ff = AllChem.MMFFGetMoleculeForceField(mol, props)
        return float(ff.CalcEnergy()) if ff is not None else None
    if name.startswith("MMFF"):
        logger.warning("MMFF parameters missing for molecule; falling back to UFF.")
    AllChem.UFFOptimizeMolecule(mol, maxIters=config.max_iterations)
    ff = AllChem.UFFGetMoleculeForceField(mol)
    return float(ff.CalcEnergy()) if ff is not None else None


def generate_3d_geometry(smiles: str, config: Optional[GeometryConfig] = None) -> GeometryResult:
    config = config or GeometryConfig()
    mol = Chem.MolFromSmiles(smiles)
    if mol is None:
        return GeometryResult(smiles=smiles, success=False, message=f"Invalid SMILES: {smiles!r}")
    if config.add_hydrogens:
        mol = Chem.AddHs(mol)

    if _embed(mol, config) != 0:
        return GeometryResult(
            smiles=smiles,
            success=False,
            mol=mol,
            message=f"3D embedding failed after {config.embed_tries} attempt(s)",
        )

    energy = _optimize(mol, config) if config.optimize else None
    return GeometryResult(
        smiles=smiles,
        success=True,
        mol_block=Chem.MolToV3KMolBlock(mol),
        mol=mol,
        energy=energy,
        metadata={"force_field": config.force_field if config.optimize else None, "atoms": mol.GetNumAtoms()},
    )
