import numpy as np
import pytest

from specflow.data.mopac import (
    EnergyRecord,
    frame_index_from_path,
    parse_energy,
    rank_energies,
    read_mopac_geometry,
    render_mopac_input,
    strip_label,
    write_mopac_input,
)
from specflow.data.structures import Frame
from specflow.errors import FormatError


def _frame():
    return Frame(("C1", "O12", "H3"), [[0.0, 0.0, 0.0], [1.2, -0.5, 0.25], [-10.123456789, 2.0, 3.0]])


def test_job_file_layout():
    text = render_mopac_input(_frame())
    lines = text.splitlines()
    assert lines[:3] == ["PM6-DH+ precise", "molecule", "All coordinates are Cartesian"]
    assert lines[3] == "C  0.00000000 1 0.00000000 1 0.00000000 1"
    assert lines[4].split() == ["O", "1.20000000", "1", "-0.50000000", "1", "0.25000000", "1"]
    assert lines[5].split()[1] == "-10.12345679"
    assert len(lines) == 6


def test_header_must_have_three_lines():
    with pytest.raises(ValueError):
        render_mopac_input(_frame(), header=("PM7",))


def test_strip_label_removes_numbering():
    assert strip_label("Cl12") == "Cl"
    assert strip_label("H") == "H"


def test_job_file_reads_back(tmp_path):
    path = write_mopac_input(tmp_path / "Frame_1.mop", _frame())
    frame = read_mopac_geometry(path)
    assert frame.labels == ("C", "O", "H")
    np.testing.assert_allclose(frame.coordinates, _frame().coordinates, atol=1e-8)


def test_energy_and_frame_index_from_file_name(tmp_path):
    out = tmp_path / "Frame_17.out"
    out.write_text(
        "          FINAL HEAT OF FORMATION =        -41.50219 KCAL/MOL =    -173.64516 KJ/MOL\n",
        encoding="utf-8",
    )
    record = parse_energy(out)
    assert record.frame_index == 17
    assert record.energy == pytest.approx(-41.50219)
    assert record.unit == "KCAL/MOL"
    assert frame_index_from_path("MOPAC_Results/Frame_3.out") == 3


def test_unit_is_read_from_the_marker_line_only(tmp_path):
    out = tmp_path / "Frame_6.out"
    out.write_text("FINAL HEAT OF FORMATION = -12.5\nCOMPUTATION TIME = 1.2 SECONDS\n", encoding="utf-8")
    record = parse_energy(out)
    assert record.energy == pytest.approx(-12.5)
    assert record.unit == "KCAL/MOL"


def test_missing_marker_names_the_file(tmp_path):
    out = tmp_path / "Frame_4.out"
    out.write_text(" JOB ENDED NORMALLY\n", encoding="utf-8")
    with pytest.raises(FormatError) as excinfo:
        parse_energy(out)
    assert excinfo.value.path == out
    assert "Frame_4.out" in str(excinfo.value)


def test_non_numeric_energy_is_rejected(tmp_path):
    out = tmp_path / "Frame_5.out"
    out.write_text("FINAL HEAT OF FORMATION = ******** KCAL/MOL\n", encoding="utf-8")
    with pytest.raises(FormatError):
        parse_energy(out)


def test_ranking_picks_smallest_energy():
    records = [EnergyRecord(1, -40.2), EnergyRecord(2, -41.5), EnergyRecord(3, -39.9)]
    best = rank_energies(records)
    assert best.frame_index == 2
    assert best.energy == -41.5


def test_ranking_requires_records():
    with pytest.raises(ValueError):
        rank_energies([])
