from __future__ import annotations

import logging
import os
import queue
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Mapping, Optional, Sequence, Tuple, Union

from specflow.errors import ProcessLaunchError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
LineSubscriber = Callable[[str, str], None]

STDOUT = "stdout"
STDERR = "stderr"


@dataclass
class ProcessResult:
    command: Tuple[str, ...]
    returncode: int
    wall_time: float
    working_directory: Optional[Path] = None


def _pump(stream: IO[str], name: str, sink: "queue.Queue[Optional[Tuple[str, str]]]") -> None:
    try:
        for line in iter(stream.readline, ""):
            sink.put((name, line.rstrip("\r\n")))
    finally:
        stream.close()
        sink.put(None)


class ProcessInvoker:
    """Launch external programs and stream their output line by line.

    Both pipes are drained by their own reader thread into one queue, so a
    program writing heavily to stdout and stderr at the same time cannot
    block on a full pipe.  Lines reach ``on_line(stream, text)`` on the
    calling thread in the order they were read.
    """

    def __init__(self, environment: Optional[Mapping[str, str]] = None) -> None:
        self.environment = dict(environment or {})

    def run(
        self,
        executable: PathLike,
        arguments: Sequence[PathLike] = (),
        working_directory: Optional[PathLike] = None,
        on_line: Optional[LineSubscriber] = None,
    ) -> ProcessResult:
        command = (str(executable), *(str(arg) for arg in arguments))
        cwd = Path(working_directory) if working_directory is not None else None
        env = None
        if self.environment:
            env = dict(os.environ)
            env.update(self.environment)

        logger.debug("Launching %s (cwd=%s)", command, cwd)
        start = time.time()
        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=env,
            )
        except OSError as exc:
            raise ProcessLaunchError(command[0], exc) from exc

        lines: "queue.Queue[Optional[Tuple[str, str]]]" = queue.Queue()
        readers = [
            threading.Thread(target=_pump, args=(process.stdout, STDOUT, lines), daemon=True),
            threading.Thread(target=_pump, args=(process.stderr, STDERR, lines), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            open_streams = len(readers)
            while open_streams:
                item = lines.get()
                if item is None:
                    open_streams -= 1
                    continue
                if on_line is not None:
                    on_line(*item)
        except BaseException:
            process.kill()
            process.wait()
            raise
        returncode = process.wait()
        for reader in readers:
            reader.join()

        result = ProcessResult(command, returncode, time.time() - start, cwd)
        logger.debug("%s exited with %d after %.1fs", command[0], returncode, result.wall_time)
        return result


class ExternalProgramExecutor:
    """Base binding between one external engine and the invoker."""

    name: str = "external"
    executable: str = ""

    def __init__(
        self,
        invoker: Optional[ProcessInvoker] = None,
        command: Optional[str] = None,
        success_codes: Sequence[int] = (0,),
    ) -> None:
        self.invoker = invoker or ProcessInvoker()
        if command is not None:
            self.executable = str(command)
        self.success_codes = tuple(success_codes)

    # -- public API -----------------------------------------------------
    def is_available(self) -> bool:
        return bool(shutil.which(self.executable)) or Path(self.executable).is_file()

    def accepts(self, result: ProcessResult) -> bool:
        """Whether the exit status means success for this engine."""
        return result.returncode in self.success_codes

    def _invoke(
        self,
        arguments: Sequence[PathLike],
        working_directory: Optional[PathLike],
        on_line: Optional[LineSubscriber],
    ) -> ProcessResult:
        result = self.invoker.run(self.executable, arguments, working_directory, on_line)
        if not self.accepts(result):
            logger.warning("%s returned exit status %d", self.name, result.returncode)
        return result


class OpenBabelExecutor(ExternalProgramExecutor):
    name = "obabel"
    executable = "obabel"

    def convert(self, mol_path: Path, mol2_path: Path, on_line: Optional[LineSubscriber] = None) -> ProcessResult:
        arguments = ["-i", "mol", mol_path.name, "-o", "mol2", "-O", mol2_path.name]
        return self._invoke(arguments, mol_path.parent, on_line)


class AmberToolsExecutor(ExternalProgramExecutor):
    """Runs AmberTools command lines through a shell.

    ``setup`` is prepended to every command (for example
    ``conda activate AmberTools23``) so the tools resolve on ``PATH``.
    """

    name = "amber"

    def __init__(
        self,
        invoker: Optional[ProcessInvoker] = None,
        shell: Sequence[str] = ("bash", "-lc"),
        setup: str = "",
        success_codes: Sequence[int] = (0,),
    ) -> None:
        if not shell:
            raise ValueError("shell must name an executable")
        super().__init__(invoker, command=shell[0], success_codes=success_codes)
        self.shell_args = tuple(shell[1:])
        self.setup = setup.strip()

    def command_line(self, command: str) -> str:
        return f"{self.setup} && {command}" if self.setup else command

    def run_script(self, command: str, working_directory: Path, on_line: Optional[LineSubscriber] = None) -> ProcessResult:
        return self._invoke([*self.shell_args, self.command_line(command)], working_directory, on_line)


class MopacExecutor(ExternalProgramExecutor):
    name = "mopac"
    executable = "mopac"

    def optimize(self, input_path: Path, on_line: Optional[LineSubscriber] = None) -> ProcessResult:
        # MOPAC writes <stem>.out next to the input
        return self._invoke([input_path.name], input_path.parent, on_line)


class OrcaExecutor(ExternalProgramExecutor):
    name = "orca"
    executable = "orca"

    def run(
        self,
        input_path: Path,
        output_path: Path,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> ProcessResult:
        """Run ORCA on ``input_path``; stdout becomes ``output_path``.

        The output file is closed before this method returns.
        """

        with output_path.open("w", encoding="utf-8") as out_f:

            def record(stream: str, text: str) -> None:
                line = text if stream == STDOUT else f"Error: {text}"
                out_f.write(line + "\n")
                if on_line is not None:
                    on_line(line)

            return self._invoke([input_path.name], input_path.parent, record)
