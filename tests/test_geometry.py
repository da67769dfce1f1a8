import pytest

pytest.importorskip("rdkit")

from specflow.qc.config import GeometryConfig  # noqa: E402
from specflow.qc.geometry import generate_3d_geometry  # noqa: E402


def test_embeds_smiles_with_hydrogens():
    result = generate_3d_geometry("CCO", GeometryConfig(max_iterations=200))
    assert result.success
    assert result.metadata["atoms"] == 9
    assert "V3000" in result.mol_block
    assert result.energy is not None


def test_invalid_smiles_is_reported_not_raised():
    result = generate_3d_geometry("not-a-smiles((")
    assert not result.success
    assert "Invalid SMILES" in result.message


def test_embedding_without_optimisation():
    result = generate_3d_geometry("c1ccccc1", GeometryConfig(optimize=False, force_field="UFF"))
    assert result.success
    assert result.energy is None
    assert result.metadata["force_field"] is None
