"""
Engine orchestration for the spectroscopy workflow.

This package bundles structure embedding, external program execution,
the bounded batch pool, the negative-frequency gate and the stage
sequencer that hands files from one engine to the next.
"""

from .config import GeometryConfig, QuantumTaskConfig, PipelineConfig  # noqa: F401
from .gate import FrequencyGate, GateState  # noqa: F401
from .geometry import GeometryResult, generate_3d_geometry  # noqa: F401
from .pipeline import AsyncPipelineRunner, PipelineRun, RunStatus, SpecPipeline, Stage  # noqa: F401
from .pool import BoundedWorkerPool, ConformerJob, JobStatus  # noqa: F401
from .storage import BatchLedger  # noqa: F401
