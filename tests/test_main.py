import numpy as np

from specflow.data.xyz import read_xyz
from specflow.main import EXIT_FAILED, EXIT_OK, main
from specflow.qc.config import PipelineConfig
from specflow.utils.config import load_config

from conftest import PRMTOP


def test_init_writes_loadable_config(tmp_path):
    path = tmp_path / "specflow.yaml"
    code = main(["init", "--config", str(path), "--project-name", "benzene", "--project-path", str(tmp_path / "p")])
    assert code == EXIT_OK
    cfg = load_config(path, schema=PipelineConfig)
    assert cfg.project_name == "benzene"
    assert main(["init", "--config", str(path), "--project-name", "x", "--project-path", "y"]) == EXIT_FAILED


def test_run_reports_bad_configuration(tmp_path):
    assert main(["run", "--config", str(tmp_path / "missing.yaml")]) == EXIT_FAILED

    path = tmp_path / "specflow.yaml"
    assert main(["init", "--config", str(path), "--project-name", "m", "--project-path", str(tmp_path / "p")]) == EXIT_OK
    assert main(["run", "--config", str(path), "--set", "no_such_key=1"]) == EXIT_FAILED
    assert main(["run", "--config", str(path), "--set", "missing-equals"]) == EXIT_FAILED


def test_extract_command(tmp_path):
    prmtop = tmp_path / "mol.prmtop"
    prmtop.write_text(PRMTOP, encoding="utf-8")
    mdcrd = tmp_path / "mol.mdcrd"
    mdcrd.write_text("INT\n" + " ".join(str(float(i)) for i in range(18)) + "\n", encoding="utf-8")
    assert main(["extract", str(prmtop), str(mdcrd)]) == EXIT_OK
    frames = read_xyz(tmp_path / "mol.xyz")
    assert len(frames) == 2
    np.testing.assert_allclose(frames[1].coordinates[0], [9.0, 10.0, 11.0])


def test_rank_command(tmp_path, capsys):
    for index, energy in [(1, -40.2), (2, -41.5), (3, -39.9)]:
        (tmp_path / f"Frame_{index}.out").write_text(f"FINAL HEAT OF FORMATION = {energy} KCAL/MOL\n", encoding="utf-8")
    assert main(["rank", str(tmp_path)]) == EXIT_OK
    assert "Lowest energy: Frame_2 (-41.5 KCAL/MOL)" in capsys.readouterr().out


def test_rank_command_without_outputs_fails(tmp_path):
    assert main(["rank", str(tmp_path)]) == EXIT_FAILED


def test_frequencies_command(tmp_path, capsys):
    out = tmp_path / "mol-GroundState.out"
    out.write_text("VIBRATIONAL FREQUENCIES\n----\n\n  0:   -12.50 cm**-1\n  1:   300.00 cm**-1\n\n", encoding="utf-8")
    assert main(["frequencies", str(out)]) == EXIT_OK
    printed = capsys.readouterr().out
    assert "2 frequencies" in printed
    assert "-12.50" in printed
