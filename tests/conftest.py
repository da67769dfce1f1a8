import re
import threading
from pathlib import Path

import numpy as np
import pytest

from specflow.qc.config import PipelineConfig
from specflow.qc.executors import STDOUT, ProcessInvoker, ProcessResult

LABELS = ("C1", "O1", "H1")

PRMTOP = """%VERSION  VERSION_STAMP = V0001.000
%FLAG TITLE
%FORMAT(20a4)
INT
%FLAG POINTERS
%FORMAT(10I8)
       3       2
%FLAG ATOM_NAME
%FORMAT(20a4)
C1  O1  H1
%FLAG CHARGE
%FORMAT(5E16.8)
  1.00000000E+00 -1.00000000E+00  0.00000000E+00
"""


def _frequency_lines(values):
    lines = ["", "-----------------------", "VIBRATIONAL FREQUENCIES", "-----------------------", ""]
    lines += [f"{i:6d}:   {v:12.2f} cm**-1" for i, v in enumerate(values)]
    lines += ["", "-----------", "NORMAL MODES", "-----------"]
    return lines


class FakeEngines(ProcessInvoker):
    """Stands in for obabel, AmberTools, MOPAC and ORCA by writing their output files."""

    def __init__(self, md_title="1ns simulation at 1000K"):
        super().__init__()
        self.lock = threading.Lock()
        self.calls = []
        self.md_title = md_title
        self.frames = np.array(
            [
                [[0.0, 0.0, 0.0], [1.2, 0.0, 0.0], [-0.5, 0.9, 0.0]],
                [[0.1, 0.0, 0.0], [1.3, 0.1, 0.0], [-0.4, 1.0, 0.1]],
                [[0.2, 0.1, 0.0], [1.4, 0.2, 0.1], [-0.3, 1.1, 0.2]],
            ]
        )
        self.energies = {1: -40.2, 2: -41.5, 3: -39.9}
        self.mopac_failures = set()
        self.amber_returncode = 0
        self.orca_returncode = 0
        self.frequencies = {
            "GroundState": [0.0, 0.0, 120.5, 800.2],
            "ExcitedState": [0.0, 95.1, 640.0],
        }

    def run(self, executable, arguments=(), working_directory=None, on_line=None):
        name = Path(str(executable)).name
        cwd = Path(working_directory)
        args = [str(a) for a in arguments]
        with self.lock:
            self.calls.append((name, tuple(args)))
        emit = on_line or (lambda stream, text: None)
        handler = {"obabel": self._obabel, "bash": self._amber, "mopac": self._mopac, "orca": self._orca}[name]
        returncode = handler(args, cwd, emit)
        return ProcessResult((name, *args), returncode, 0.0, cwd)

    def called(self, name):
        return [args for engine, args in self.calls if engine == name]

    # engines ----------------------------------------------------------
    def _obabel(self, args, cwd, emit):
        source, target = cwd / args[2], cwd / args[6]
        assert source.is_file()
        target.write_text("@<TRIPOS>MOLECULE\nUNL1\n 3 2 1\n@<TRIPOS>ATOM\n", encoding="utf-8")
        emit(STDOUT, "1 molecule converted")
        return 0

    def _amber(self, args, cwd, emit):
        command = args[-1]
        if "antechamber" in command:
            stem = re.search(r"-i (\S+)\.mol2", command).group(1)
            (cwd / f"{stem}.prepin").write_text("0 0 2\n\nremark\nmol.res\n***  INT 0\n", encoding="utf-8")
            (cwd / f"{stem}.frcmod").write_text("remark\n", encoding="utf-8")
            (cwd / "ANTECHAMBER_AC.AC").write_text("scratch\n", encoding="utf-8")
            emit(STDOUT, "Info: Total number of electrons: 16; net charge: 0")
        if "tleap" in command:
            stem = re.search(r"-p (\S+)\.prmtop", command).group(1)
            assert (cwd / "tleap_commands.txt").is_file()
            assert (cwd / "md.in").is_file()
            (cwd / f"{stem}.prmtop").write_text(PRMTOP, encoding="utf-8")
            (cwd / f"{stem}.inpcrd").write_text("INT\n", encoding="utf-8")
            values = self.frames.reshape(-1)
            rows = [values[i : i + 10] for i in range(0, len(values), 10)]
            body = "\n".join("".join(f"{v:8.3f}" for v in row) for row in rows)
            (cwd / f"{stem}.mdcrd").write_text(f"{self.md_title}\n{body}\n", encoding="utf-8")
            for scratch in ("md.out", "md.rst", "leap.log"):
                (cwd / scratch).write_text("", encoding="utf-8")
        return self.amber_returncode

    def _mopac(self, args, cwd, emit):
        job = cwd / args[0]
        index = int(job.stem.split("_")[1])
        if index in self.mopac_failures:
            emit("stderr", "MOPAC license expired")
            return 2
        energy = self.energies[index]
        job.with_suffix(".out").write_text(
            f"          FINAL HEAT OF FORMATION =        {energy:.5f} KCAL/MOL\n", encoding="utf-8"
        )
        return 0

    def _orca(self, args, cwd, emit):
        inp = cwd / args[0]
        variant = inp.stem.split("-", 1)[1]
        lines = inp.read_text(encoding="utf-8").splitlines()
        start = next(i for i, line in enumerate(lines) if line.startswith("* xyz"))
        atoms = lines[start + 1 : lines.index("*", start + 1)]
        (cwd / f"{inp.stem}.xyz").write_text(f"{len(atoms)}\nORCA\n" + "\n".join(atoms) + "\n", encoding="utf-8")
        (cwd / f"{inp.stem}.gbw").write_bytes(b"\x00")
        (cwd / f"{inp.stem}_property.txt").write_text("", encoding="utf-8")
        emit(STDOUT, f"ORCA job {variant}")
        if variant in self.frequencies:
            for line in _frequency_lines(self.frequencies[variant]):
                emit(STDOUT, line)
        emit(STDOUT, "****ORCA TERMINATED NORMALLY****")
        return self.orca_returncode


@pytest.fixture
def engines():
    return FakeEngines()


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(
        project_name="mol",
        project_path=tmp_path / "work",
        batch_concurrency=2,
        core_count=2,
        memory_mb=1000,
    )


@pytest.fixture
def mol_file(tmp_path):
    path = tmp_path / "input.mol"
    path.write_text("\n  RDKit          3D\n\n  0  0  0  0  0  0  0  0  0  0999 V3000\nM  END\n", encoding="utf-8")
    return path
