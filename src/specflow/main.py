from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from specflow.data.amber import DEFAULT_TITLE_PREFIXES, parse_topology, parse_trajectory
from specflow.data.mopac import job_stem, parse_energy, rank_energies
from specflow.data.orca import parse_frequency_file
from specflow.data.xyz import write_xyz
from specflow.errors import MissingArtifactError, SpecflowError
from specflow.qc.config import PipelineConfig
from specflow.qc.gate import DecisionCallback
from specflow.qc.pipeline import STAGES, RunStatus, SpecPipeline, Stage
from specflow.utils.config import load_config, save_config
from specflow.utils.log import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_HALTED = 2

STAGE_NAMES = [stage.value for stage in STAGES]


def _parse_overrides(pairs: List[str]) -> Dict[str, object]:
    overrides: Dict[str, object] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Override '{pair}' must look like key=value")
        overrides[key.strip()] = yaml.safe_load(raw)
    return overrides


def _ask(message: str) -> bool:
    answer = input(f"{message} [y/N] ").strip().lower()
    return answer in ("y", "yes")


def _decision(args: argparse.Namespace) -> DecisionCallback:
    if args.assume_yes:
        return lambda message: True
    if args.assume_no:
        return lambda message: False
    return _ask


def init_project(args: argparse.Namespace) -> int:
    cfg = PipelineConfig(project_name=args.project_name, project_path=Path(args.project_path))
    cfg.validate()
    path = Path(args.config)
    if path.exists() and not args.force:
        logger.error("%s already exists; pass --force to overwrite it.", path)
        return EXIT_FAILED
    save_config(cfg, path)
    print(f"Configuration written to {path}")
    return EXIT_OK


def run_pipeline(args: argparse.Namespace) -> int:
    cfg = load_config(args.config, schema=PipelineConfig, overrides=_parse_overrides(args.set))
    for line in cfg.summary_lines():
        logger.info(line)
    pipeline = SpecPipeline(cfg, on_output=print if args.echo else None, decide=_decision(args))
    for executor in (pipeline.obabel, pipeline.amber, pipeline.mopac, pipeline.orca):
        if not executor.is_available():
            logger.warning("%s executable '%s' not found", executor.name, executor.executable)
    run = pipeline.run(
        smiles=args.smiles,
        structure=args.structure,
        start=Stage(args.start),
        stop=Stage(args.stop),
    )
    if run.status is RunStatus.HALTED:
        print(f"Run halted at {run.stage.value}; artifacts kept in {run.working_dir}")
        return EXIT_HALTED
    print(f"Run completed: {', '.join(stage.value for stage in run.completed)}")
    return EXIT_OK


def extract_trajectory(args: argparse.Namespace) -> int:
    topology = parse_topology(args.prmtop)
    prefixes = tuple(DEFAULT_TITLE_PREFIXES) + tuple(args.title_prefix or ())
    trajectory = parse_trajectory(args.mdcrd, topology, title_prefixes=prefixes)
    output = Path(args.output) if args.output else Path(args.prmtop).with_suffix(".xyz")
    write_xyz(output, trajectory.frames())
    print(f"{len(trajectory)} frames of {topology.atom_count} atoms written to {output}")
    return EXIT_OK


def rank_batch(args: argparse.Namespace) -> int:
    directory = Path(args.directory)
    outputs = sorted(directory.glob("Frame_*.out"))
    if not outputs:
        raise MissingArtifactError("no MOPAC output files found", path=directory)
    records = [parse_energy(path) for path in outputs]
    for rec in sorted(records, key=lambda r: r.frame_index):
        print(f"{job_stem(rec.frame_index)}\t{rec.energy:.5f}\t{rec.unit}")
    best = rank_energies(records)
    print(f"Lowest energy: {job_stem(best.frame_index)} ({best.energy} {best.unit})")
    return EXIT_OK


def show_frequencies(args: argparse.Namespace) -> int:
    report = parse_frequency_file(args.output)
    print(f"{len(report)} frequencies read from {args.output}")
    if report.has_negative:
        negative = ", ".join(f"{f:.2f}" for f in report.negative)
        print(f"Negative frequencies (cm**-1): {negative}")
    else:
        print("No negative frequencies found.")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Conformer search and excited-state workflow driver")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="write a default configuration file")
    init_parser.add_argument("--config", default="specflow.yaml")
    init_parser.add_argument("--project-name", required=True)
    init_parser.add_argument("--project-path", required=True)
    init_parser.add_argument("--force", action="store_true")

    run_parser = subparsers.add_parser("run", help="run the pipeline")
    run_parser.add_argument("--config", default="specflow.yaml")
    source = run_parser.add_mutually_exclusive_group()
    source.add_argument("--smiles", default=None)
    source.add_argument("--structure", default=None, help="existing .mol or .mol2 file")
    run_parser.add_argument("--start", choices=STAGE_NAMES, default=Stage.STRUCTURE_BUILD.value)
    run_parser.add_argument("--stop", choices=STAGE_NAMES, default=Stage.EXCITED_STATE_REFINE.value)
    decision = run_parser.add_mutually_exclusive_group()
    decision.add_argument("--assume-yes", action="store_true", help="continue past negative frequencies")
    decision.add_argument("--assume-no", action="store_true", help="halt on negative frequencies")
    run_parser.add_argument("--set", action="append", default=[], metavar="KEY=VALUE")
    run_parser.add_argument("--echo", action="store_true", help="print raw engine output")

    extract_parser = subparsers.add_parser("extract", help="convert prmtop + mdcrd to multi-frame XYZ")
    extract_parser.add_argument("prmtop")
    extract_parser.add_argument("mdcrd")
    extract_parser.add_argument("--output", default=None)
    extract_parser.add_argument("--title-prefix", action="append", default=None)

    rank_parser = subparsers.add_parser("rank", help="rank MOPAC outputs by heat of formation")
    rank_parser.add_argument("directory")

    freq_parser = subparsers.add_parser("frequencies", help="list the frequencies of an ORCA output")
    freq_parser.add_argument("output")

    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)

    commands = {
        "init": init_project,
        "run": run_pipeline,
        "extract": extract_trajectory,
        "rank": rank_batch,
        "frequencies": show_frequencies,
    }
    try:
        return commands[args.command](args)
    except SpecflowError as exc:
        logger.error("%s", exc)
        return EXIT_FAILED
    except (FileNotFoundError, KeyError, ValueError) as exc:
        logger.error("Invalid configuration or arguments: %s", exc)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
