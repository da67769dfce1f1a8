from __future__ import annotations

import csv
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from specflow.data.mopac import EnergyRecord

from .pool import ConformerJob

JOB_FIELDS = ["frame_index", "status", "wall_time", "input_path", "output_path", "error"]
ENERGY_FIELDS = ["frame_index", "energy", "unit", "selected", "source"]


class CsvTable:
    """Append-only CSV file shared between worker threads."""

    def __init__(self, path: Path, fieldnames: Sequence[str]) -> None:
        self.path = Path(path)
        self.fieldnames = list(fieldnames)
        self._lock = threading.Lock()

    def append_many(self, rows: Iterable[Dict[str, object]]) -> None:
        rows = list(rows)
        if not rows:
            return
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            file_exists = self.path.exists()
            with self.path.open("a", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=self.fieldnames)
                if not file_exists:
                    writer.writeheader()
                writer.writerows(rows)

    def append(self, row: Dict[str, object]) -> None:
        self.append_many([row])

    def reset(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()

    def read(self) -> List[Dict[str, str]]:
        with self._lock:
            if not self.path.exists():
                return []
            with self.path.open("r", newline="", encoding="utf-8") as fh:
                return list(csv.DictReader(fh))


class BatchLedger:
    """``jobs.csv`` and ``energies.csv`` of one batch directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.jobs = CsvTable(self.directory / "jobs.csv", JOB_FIELDS)
        self.energies = CsvTable(self.directory / "energies.csv", ENERGY_FIELDS)

    @staticmethod
    def job_row(job: ConformerJob) -> Dict[str, object]:
        return {
            "frame_index": job.frame_index,
            "status": job.status.value,
            "wall_time": f"{job.wall_time:.3f}",
            "input_path": job.input_path.name,
            "output_path": job.output_path.name,
            "error": str(job.error) if job.error is not None else "",
        }

    def record_energies(self, records: Iterable[EnergyRecord], selected: EnergyRecord) -> None:
        self.energies.append_many(
            {
                "frame_index": rec.frame_index,
                "energy": f"{rec.energy:.5f}",
                "unit": rec.unit,
                "selected": int(rec.frame_index == selected.frame_index),
                "source": rec.source.name if rec.source is not None else "",
            }
            for rec in sorted(records, key=lambda r: r.frame_index)
        )
