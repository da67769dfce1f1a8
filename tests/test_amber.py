import numpy as np
import pytest

from specflow.data.amber import (
    MDSettings,
    fix_prepin,
    parse_topology_text,
    parse_trajectory_text,
    render_md_input,
    render_tleap_script,
)
from specflow.data.structures import Topology
from specflow.errors import FormatError

PRMTOP = """%VERSION  VERSION_STAMP = V0001.000  DATE = 01/01/24  00:00:00
%FLAG TITLE
%FORMAT(20a4)
INT
%FLAG ATOM_NAME
%FORMAT(20a4)
C1  C2  O1  H1  H2  H3  H4  H5  H6  H7  H8  H9  H10 H11 H12 H13 H14 H15 H16 H17
N1  Cl1
%FLAG CHARGE
%FORMAT(5E16.8)
  1.00000000E+00
"""


def test_topology_labels_between_sections():
    topology = parse_topology_text(PRMTOP)
    assert topology.atom_count == 22
    assert topology.labels[:3] == ("C1", "C2", "O1")
    assert topology.labels[-1] == "Cl1"


def test_topology_without_charge_section_is_rejected():
    with pytest.raises(FormatError):
        parse_topology_text("%FLAG ATOM_NAME\n%FORMAT(20a4)\nC1  O1\n")


def test_topology_whitespace_fallback():
    text = "%FLAG ATOM_NAME\nC1 O1   H1\n%FLAG CHARGE\n"
    assert parse_topology_text(text).labels == ("C1", "O1", "H1")


def _mdcrd(values, title="INT"):
    rows = [values[i : i + 10] for i in range(0, len(values), 10)]
    body = "\n".join("".join(f"{v:8.3f}" for v in row) for row in rows)
    return f"{title}\n{body}\n"


def test_frame_count_follows_token_count():
    atoms = 2
    values = [float(i) for i in range(atoms * 3 * 4)]
    coords = parse_trajectory_text(_mdcrd(values), atoms)
    assert coords.shape == (4, 2, 3)
    np.testing.assert_allclose(coords[1, 0], [6.0, 7.0, 8.0])


def test_line_breaks_do_not_align_with_frames():
    # 3 atoms -> 9 values per frame, 10 values per line
    values = [0.5 * i for i in range(27)]
    coords = parse_trajectory_text(_mdcrd(values), 3)
    assert coords.shape == (3, 3, 3)
    assert coords[2, 2, 2] == pytest.approx(13.0)


def test_remainder_is_corruption():
    values = [1.0] * (2 * 3 * 2 + 1)
    with pytest.raises(FormatError, match="not a multiple"):
        parse_trajectory_text(_mdcrd(values), 2)


def test_title_is_skipped_by_prefix_only():
    values = [1.0] * 6
    text = _mdcrd(values, title="1ns simulation at 1000K")
    with pytest.raises(FormatError):
        parse_trajectory_text(text, 2)
    coords = parse_trajectory_text(text, 2, title_prefixes=("INT", "1ns simulation"))
    assert coords.shape == (1, 2, 3)


def test_topology_type_is_immutable():
    topology = Topology(["C", "O"])
    with pytest.raises(AttributeError):
        topology.labels = ("N",)


def test_fix_prepin_collapses_residue_marker():
    text = "0 0 2\r\n\r\nThis is a remark line\r\nmolecule.res\r\n***  INT 0\r\n"
    fixed = fix_prepin(text)
    assert "***" not in fixed
    assert "INT 0" in fixed
    assert "\r" not in fixed


def test_amber_input_decks():
    script = render_tleap_script("benzene")
    assert script.splitlines()[1] == "loadamberprep benzene.prepin"
    assert "saveamberparm INT benzene.prmtop benzene.inpcrd" in script

    deck = render_md_input(MDSettings(steps=1000, temperature=300.0, frame_stride=10))
    assert deck.startswith("1ns simulation at 1000K\n&cntrl\n")
    assert "nstlim=1000" in deck
    assert "ntwx=10" in deck
    assert "tempi=300,temp0=300" in deck
