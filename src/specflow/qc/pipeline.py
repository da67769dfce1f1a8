"""Stage sequencing from an input structure to excited-state geometries."""

from __future__ import annotations

import logging
import shutil
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from specflow.data.amber import (
    DEFAULT_TITLE_PREFIXES,
    fix_prepin,
    parse_topology,
    parse_trajectory,
    render_md_input,
    render_tleap_script,
)
from specflow.data.mopac import job_stem, parse_energy, rank_energies, read_mopac_geometry, write_mopac_input
from specflow.data.orca import JobVariant, parse_frequency_file, write_orca_input
from specflow.data.xyz import COMMENT_PREFIX, XYZTrajectory, write_xyz
from specflow.errors import (
    AmbiguousArtifactError,
    BatchJobError,
    MissingArtifactError,
    ProcessExitError,
    SpecflowError,
    StructureError,
)

from .config import PipelineConfig
from .executors import (
    STDERR,
    AmberToolsExecutor,
    MopacExecutor,
    OpenBabelExecutor,
    OrcaExecutor,
    ProcessInvoker,
    ProcessResult,
)
from .gate import DecisionCallback, FrequencyGate, GateState
from .geometry import generate_3d_geometry
from .pool import BoundedWorkerPool, ConformerJob, JobStatus
from .storage import BatchLedger

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
BATCH_DIRECTORY = "MOPAC_Results"

# everything antechamber, parmchk2, tleap and sander leave next to the mol2
_AMBER_SCRATCH = (
    "*.mol2",
    "*.prepin",
    "*.frcmod",
    "*.inpcrd",
    "tleap_commands.txt",
    "md.in",
    "md.out",
    "md.rst",
    "mdinfo",
    "leap.log",
    "ANTECHAMBER*",
    "ATOMTYPE.INF",
    "NEWPDB.PDB",
    "PREP.INF",
    "sqm.*",
)


class Stage(str, Enum):
    STRUCTURE_BUILD = "StructureBuild"
    CONFORMER_SEARCH = "ConformerSearch"
    TRAJECTORY_EXTRACT = "TrajectoryExtract"
    BATCH_OPTIMIZE = "BatchOptimize"
    ENERGY_RANK = "EnergyRank"
    GROUND_STATE = "GroundState"
    EXCITED_STATE = "ExcitedState"
    EXCITED_STATE_REFINE = "ExcitedStateRefine"

    @property
    def position(self) -> int:
        return STAGES.index(self)


STAGES: List[Stage] = list(Stage)


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    HALTED = "halted"
    FAILED = "failed"


@dataclass
class PipelineRun:
    working_dir: Path
    project_name: str
    stage: Optional[Stage] = None
    status: RunStatus = RunStatus.RUNNING
    artifacts: Dict[str, Path] = field(default_factory=dict)
    completed: List[Stage] = field(default_factory=list)
    gates: Dict[Stage, GateState] = field(default_factory=dict)
    smiles: Optional[str] = None
    structure: Optional[Path] = None
    error: Optional[BaseException] = None
    wall_time: float = 0.0

    def path(self, name: str) -> Path:
        return self.working_dir / name

    def project_file(self, suffix: str) -> Path:
        """``<working_dir>/<project>-<suffix>``"""
        return self.working_dir / f"{self.project_name}-{suffix}"


ProgressSubscriber = Callable[[Stage, str], None]
OutputSubscriber = Callable[[str], None]


class SpecPipeline:
    """Runs the stage chain for one project directory.

    Artifacts are handed from stage to stage through the working
    directory; each stage checks its inputs on entry, so a run may start
    at any stage whose inputs are already on disk.
    """

    def __init__(
        self,
        config: PipelineConfig,
        invoker: Optional[ProcessInvoker] = None,
        on_progress: Optional[ProgressSubscriber] = None,
        on_output: Optional[OutputSubscriber] = None,
        decide: Optional[DecisionCallback] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.invoker = invoker or ProcessInvoker()
        self.on_progress = on_progress
        self.on_output = on_output
        self.decide = decide

        codes = config.success_codes
        self.obabel = OpenBabelExecutor(self.invoker, command=config.obabel_path, success_codes=codes["obabel"])
        self.amber = AmberToolsExecutor(
            self.invoker, shell=config.amber_shell, setup=config.amber_setup, success_codes=codes["amber"]
        )
        self.mopac = MopacExecutor(self.invoker, command=config.mopac_engine_path, success_codes=codes["mopac"])
        self.orca = OrcaExecutor(self.invoker, command=config.orca_engine_path, success_codes=codes["orca"])

        self._running = threading.Lock()
        self._output_lock = threading.Lock()
        self._handlers = {
            Stage.STRUCTURE_BUILD: self._structure_build,
            Stage.CONFORMER_SEARCH: self._conformer_search,
            Stage.TRAJECTORY_EXTRACT: self._trajectory_extract,
            Stage.BATCH_OPTIMIZE: self._batch_optimize,
            Stage.ENERGY_RANK: self._energy_rank,
            Stage.GROUND_STATE: self._ground_state,
            Stage.EXCITED_STATE: self._excited_state,
            Stage.EXCITED_STATE_REFINE: self._excited_state_refine,
        }

    # -- public API -----------------------------------------------------
    def run(
        self,
        smiles: Optional[str] = None,
        structure: Optional[PathLike] = None,
        start: Stage = Stage.STRUCTURE_BUILD,
        stop: Stage = Stage.EXCITED_STATE_REFINE,
    ) -> PipelineRun:
        start, stop = Stage(start), Stage(stop)
        if start.position > stop.position:
            raise ValueError(f"start stage {start.value} comes after stop stage {stop.value}")
        if not self._running.acquire(blocking=False):
            raise RuntimeError("pipeline is already running")
        try:
            return self._run(smiles, structure, start, stop)
        finally:
            self._running.release()

    # ------------------------------------------------------------------
    def _run(self, smiles: Optional[str], structure: Optional[PathLike], start: Stage, stop: Stage) -> PipelineRun:
        working_dir = Path(self.config.project_path).expanduser().resolve()
        working_dir.mkdir(parents=True, exist_ok=True)
        run = PipelineRun(
            working_dir=working_dir,
            project_name=self.config.project_name,
            smiles=smiles,
            structure=Path(structure).expanduser().resolve() if structure is not None else None,
        )
        began = time.time()
        for stage in STAGES[start.position : stop.position + 1]:
            run.stage = stage
            self._report(stage, "Starting.")
            try:
                proceed = self._handlers[stage](run)
            except SpecflowError as exc:
                if exc.stage is None:
                    exc.stage = stage.value
                self._fail(run, exc)
                raise
            except Exception as exc:
                self._fail(run, exc)
                raise
            run.completed.append(stage)
            if not proceed:
                run.status = RunStatus.HALTED
                self._report(stage, "Run halted after negative-frequency rejection; artifacts kept.")
                break
            self._report(stage, "Completed.")
        else:
            run.status = RunStatus.COMPLETED
        run.wall_time = time.time() - began
        logger.info("Run of %s finished as %s after %.1fs.", run.project_name, run.status.value, run.wall_time)
        return run

    def _fail(self, run: PipelineRun, exc: BaseException) -> None:
        run.status = RunStatus.FAILED
        run.error = exc
        logger.error("Stage %s failed: %s", run.stage.value if run.stage else "?", exc)

    def _report(self, stage: Stage, message: str) -> None:
        logger.info("[%s] %s", stage.value, message)
        if self.on_progress is not None:
            with self._output_lock:
                self.on_progress(stage, message)

    def _emit(self, line: str) -> None:
        if self.on_output is None:
            return
        with self._output_lock:
            self.on_output(line)

    def _relay(self, stream: str, text: str) -> None:
        self._emit(f"Error: {text}" if stream == STDERR else text)

    # -- artifact lookup ------------------------------------------------
    def _require(self, path: Path) -> Path:
        if not path.is_file():
            raise MissingArtifactError("required file is missing", path=path)
        return path

    def _single(self, run: PipelineRun, pattern: str) -> Path:
        candidates = sorted(p for p in run.working_dir.glob(pattern) if p.is_file())
        if len(candidates) != 1:
            raise AmbiguousArtifactError(
                f"expected exactly one '{pattern}' file, found {len(candidates)}",
                candidates,
                path=run.working_dir,
            )
        return candidates[0]

    def _archive(
        self,
        run: PipelineRun,
        stage: Stage,
        patterns: Iterable[str],
        keep: Sequence[Path] = (),
    ) -> Path:
        """Move files matching ``patterns`` into ``<project>-<stage>``; directories stay."""
        destination = run.project_file(stage.value)
        kept = {p.name for p in keep}
        moving = sorted(
            {p for pattern in patterns for p in run.working_dir.glob(pattern) if p.is_file() and p.name not in kept}
        )
        destination.mkdir(exist_ok=True)
        moved: Dict[Path, Path] = {}
        for source in moving:
            target = destination / source.name
            source.replace(target)
            moved[source] = target
        for name, path in list(run.artifacts.items()):
            if path in moved:
                run.artifacts[name] = moved[path]
        self._report(stage, f"Moved {len(moved)} file(s) to {destination.name}")
        return destination

    def _check_exit(self, executor, result: ProcessResult, path: Optional[Path] = None) -> None:
        if not executor.accepts(result):
            raise ProcessExitError(result.command, result.returncode, path=path)

    # -- stages ---------------------------------------------------------
    def _structure_build(self, run: PipelineRun) -> bool:
        stage = Stage.STRUCTURE_BUILD
        mol_path = run.path(f"{run.project_name}.mol")
        mol2_path = run.path(f"{run.project_name}.mol2")

        if run.structure is not None:
            source = self._require(run.structure)
            if source.suffix.lower() == ".mol2":
                if source != mol2_path:
                    shutil.copyfile(source, mol2_path)
                    self._report(stage, f"Copied {source.name} to {mol2_path.name}")
                run.artifacts["mol2"] = mol2_path
                return True
            if source != mol_path:
                shutil.copyfile(source, mol_path)
        elif run.smiles:
            geometry = generate_3d_geometry(run.smiles, self.config.geometry)
            if not geometry.success:
                raise StructureError(geometry.message or f"cannot embed {run.smiles!r}")
            mol_path.write_text(geometry.mol_block, encoding="utf-8")
            self._report(stage, f"Embedded {geometry.metadata.get('atoms')} atoms from {run.smiles}")
        else:
            raise StructureError("a SMILES string or a structure file is required to build the structure")

        result = self.obabel.convert(mol_path, mol2_path, on_line=self._relay)
        self._check_exit(self.obabel, result, mol_path)
        self._require(mol2_path)
        # antechamber rejects the residue name obabel assigns
        text = mol2_path.read_text(encoding="utf-8")
        mol2_path.write_text(text.replace("UNL1", "****"), encoding="utf-8")
        mol_path.unlink()
        run.artifacts["mol2"] = mol2_path
        self._report(stage, f"Structure written to {mol2_path.name}")
        return True

    def _amber(self, stage: Stage, command: str, run: PipelineRun) -> None:
        self._report(stage, f"Running: {command}")
        result = self.amber.run_script(command, run.working_dir, on_line=self._relay)
        if self.amber.accepts(result):
            self._report(stage, "AmberTools command finished.")
        else:
            self._report(stage, f"AmberTools command exited with status {result.returncode}")

    def _conformer_search(self, run: PipelineRun) -> bool:
        stage = Stage.CONFORMER_SEARCH
        mol2 = self._single(run, "*.mol2")
        stem = mol2.stem
        self._amber(
            stage,
            f"antechamber -i {stem}.mol2 -fi mol2 -o {stem}.prepin -fo prepi -c bcc -s 2 "
            f"-nc {self.config.net_charge} && parmchk2 -i {stem}.prepin -f prepi -o {stem}.frcmod",
            run,
        )
        prepin = self._require(run.path(f"{stem}.prepin"))
        self._require(run.path(f"{stem}.frcmod"))
        prepin.write_text(fix_prepin(prepin.read_text(encoding="utf-8")), encoding="utf-8", newline="\n")

        run.path("tleap_commands.txt").write_text(render_tleap_script(stem), encoding="utf-8", newline="\n")
        run.path("md.in").write_text(render_md_input(self.config.md), encoding="utf-8", newline="\n")
        self._amber(
            stage,
            f"tleap -s -f tleap_commands.txt && sander -O -i md.in -o md.out "
            f"-p {stem}.prmtop -c {stem}.inpcrd -r md.rst -x {stem}.mdcrd",
            run,
        )
        run.artifacts["prmtop"] = self._require(run.path(f"{stem}.prmtop"))
        run.artifacts["mdcrd"] = self._require(run.path(f"{stem}.mdcrd"))
        self._archive(run, stage, _AMBER_SCRATCH)
        return True

    def _trajectory_extract(self, run: PipelineRun) -> bool:
        stage = Stage.TRAJECTORY_EXTRACT
        prmtop = self._single(run, "*.prmtop")
        mdcrd = self._require(prmtop.with_suffix(".mdcrd"))

        topology = parse_topology(prmtop)
        self._report(stage, f"Read {topology.atom_count} atoms from {prmtop.name}")
        prefixes = (*DEFAULT_TITLE_PREFIXES, self.config.md.title)
        trajectory = parse_trajectory(mdcrd, topology, title_prefixes=prefixes)
        self._report(stage, f"Read {len(trajectory)} frames from {mdcrd.name}")
        if not len(trajectory):
            raise MissingArtifactError("trajectory holds no frames", path=mdcrd)

        xyz_path = write_xyz(prmtop.with_suffix(".xyz"), trajectory.frames())
        run.artifacts["trajectory"] = xyz_path
        self._report(stage, f"Trajectory written to {xyz_path.name}")
        run.artifacts["prmtop"], run.artifacts["mdcrd"] = prmtop, mdcrd
        self._archive(run, stage, [prmtop.name, mdcrd.name])
        return True

    def _batch_optimize(self, run: PipelineRun) -> bool:
        stage = Stage.BATCH_OPTIMIZE
        trajectory = self._single(run, "*.xyz")
        batch_dir = run.path(BATCH_DIRECTORY)
        batch_dir.mkdir(exist_ok=True)
        stale = sorted(batch_dir.glob("Frame_*.out"))
        if stale:
            raise AmbiguousArtifactError("batch directory already holds outputs", stale, path=batch_dir)
        ledger = BatchLedger(batch_dir)
        ledger.jobs.reset()

        jobs: List[ConformerJob] = []
        for index, frame in enumerate(XYZTrajectory(trajectory), start=1):
            stem = job_stem(index)
            input_path = write_mopac_input(batch_dir / f"{stem}.mop", frame, self.config.mopac_header)
            jobs.append(ConformerJob(index, input_path, batch_dir / f"{stem}.out"))
        if not jobs:
            raise MissingArtifactError("trajectory file holds no frames", path=trajectory)
        self._report(stage, f"Created {len(jobs)} MOPAC input files in {batch_dir.name}")

        def optimize(job: ConformerJob) -> None:
            self._report(stage, f"Running MOPAC on {job.input_path.name}")
            result = self.mopac.optimize(job.input_path, on_line=self._relay)
            self._check_exit(self.mopac, result, job.input_path)
            self._require(job.output_path)
            self._report(stage, f"MOPAC calculation completed for frame {job.frame_index}.")

        pool = BoundedWorkerPool(self.config.batch_concurrency)
        pool.run(jobs, optimize)
        ledger.jobs.append_many(ledger.job_row(job) for job in jobs)
        run.artifacts["batch"] = batch_dir
        run.artifacts["jobs"] = ledger.jobs.path

        failures = [job for job in jobs if job.status is JobStatus.FAILED]
        if failures:
            raise BatchJobError(failures, path=batch_dir)
        run.artifacts["trajectory"] = trajectory
        self._archive(run, stage, [trajectory.name])
        return True

    def _energy_rank(self, run: PipelineRun) -> bool:
        stage = Stage.ENERGY_RANK
        batch_dir = run.path(BATCH_DIRECTORY)
        if not batch_dir.is_dir():
            raise MissingArtifactError("batch directory is missing", path=batch_dir)
        outputs = sorted(batch_dir.glob("Frame_*.out"))
        if not outputs:
            raise MissingArtifactError("no MOPAC output files found", path=batch_dir)
        self._report(stage, f"Found {len(outputs)} MOPAC output files")

        records = []
        for path in outputs:
            record = parse_energy(path)
            records.append(record)
            self._report(stage, f"Processed {path.name}, Energy: {record.energy} {record.unit}")
        best = rank_energies(records)
        label = job_stem(best.frame_index)
        self._report(stage, f"Lowest energy: {label} ({best.energy} {best.unit})")

        ledger = BatchLedger(batch_dir)
        ledger.energies.reset()
        ledger.record_energies(records, best)

        frame = read_mopac_geometry(
            self._require(batch_dir / f"{label}.mop"), header_lines=len(self.config.mopac_header)
        )
        minimum = write_xyz(run.project_file("minimize.xyz"), [frame], comment=lambda _: f"{COMMENT_PREFIX}, {label}")
        run.artifacts["energies"] = ledger.energies.path
        run.artifacts["minimum"] = minimum
        self._report(stage, f"XYZ file saved to: {minimum.name}")
        return True

    def _quantum(self, run: PipelineRun, stage: Stage, variant: JobVariant, geometry: Path) -> bool:
        frame = XYZTrajectory(self._require(geometry)).first()
        input_path = write_orca_input(run.project_file(f"{variant.value}.inp"), self.config.task(variant), frame)
        output_path = run.project_file(f"{variant.value}.out")
        self._report(stage, f"Starting ORCA calculation: {input_path.name}")
        result = self.orca.run(input_path, output_path, on_line=self._emit)
        self._check_exit(self.orca, result, output_path)
        run.artifacts[f"{variant.value}.out"] = output_path
        self._report(stage, f"ORCA calculation completed, output file saved to: {output_path.name}")

        optimized = run.project_file(f"{variant.value}.xyz")
        if optimized.is_file():
            run.artifacts[f"{variant.value}.xyz"] = optimized

        if self.config.frequency_enabled(variant):
            self._report(stage, "Checking vibrational frequencies...")
            gate = FrequencyGate(self.decide)
            proceed = gate.check(parse_frequency_file(output_path))
            run.gates[stage] = gate.state
            if gate.state is GateState.CLEAN:
                self._report(stage, "No negative frequencies found. Continuing processing.")
            else:
                self._report(stage, f"{gate.prompt} -> {gate.state.value}")
            if not proceed:
                return False

        self._archive(
            run,
            stage,
            [f"{run.project_name}-{variant.value}.*", f"{run.project_name}-{variant.value}_*"],
            keep=[output_path, optimized],
        )
        return True

    def _ground_state(self, run: PipelineRun) -> bool:
        return self._quantum(run, Stage.GROUND_STATE, JobVariant.GROUND_STATE, run.project_file("minimize.xyz"))

    def _excited_state(self, run: PipelineRun) -> bool:
        return self._quantum(
            run, Stage.EXCITED_STATE, JobVariant.EXCITED_STATE, run.project_file(f"{JobVariant.GROUND_STATE.value}.xyz")
        )

    def _excited_state_refine(self, run: PipelineRun) -> bool:
        return self._quantum(
            run,
            Stage.EXCITED_STATE_REFINE,
            JobVariant.EXCITED_STATE_REFINE,
            run.project_file(f"{JobVariant.EXCITED_STATE.value}.xyz"),
        )


class AsyncPipelineRunner:
    """Runs pipelines on a background thread and hands back futures."""

    def __init__(self, pipeline: SpecPipeline, max_workers: int = 1) -> None:
        self.pipeline = pipeline
        self.pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline")

    def submit(self, **kwargs) -> "Future[PipelineRun]":
        return self.pool.submit(self.pipeline.run, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self.pool.shutdown(wait=wait)
