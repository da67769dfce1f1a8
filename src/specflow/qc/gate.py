"""
Negative-frequency decision gate.
=================================

::

    Evaluating --(no negative)--> Clean
    Evaluating --(negative)-----> Flagged --(yes)--> Approved
                                          \\-(no)--> Rejected

Clean and Approved let the pipeline continue; Rejected ends the run
without an error.  The decision callback receives a prompt and returns a
``bool`` or a :class:`~concurrent.futures.Future` resolving to one; the
gate waits for it with no timeout.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Optional, Union

from specflow.data.orca import FrequencyReport

__all__ = ["GateState", "FrequencyGate", "DecisionCallback", "format_prompt"]

logger = logging.getLogger(__name__)

DecisionCallback = Callable[[str], Union[bool, "Future[bool]"]]


class GateState(str, Enum):
    EVALUATING = "evaluating"
    CLEAN = "clean"
    FLAGGED = "flagged"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def proceeds(self) -> bool:
        return self in (GateState.CLEAN, GateState.APPROVED)


_TRANSITIONS = {
    GateState.EVALUATING: (GateState.CLEAN, GateState.FLAGGED),
    GateState.FLAGGED: (GateState.APPROVED, GateState.REJECTED),
}


def format_prompt(report: FrequencyReport) -> str:
    negative = report.negative
    return (
        f"Found {len(negative)} negative frequencies. "
        f"Minimum frequency is {min(negative):.2f} cm**-1. Continue processing?"
    )


class FrequencyGate:
    """One evaluation of one frequency report."""

    def __init__(self, decide: Optional[DecisionCallback] = None) -> None:
        self.decide = decide
        self.state = GateState.EVALUATING
        self.prompt: Optional[str] = None
        self.report: Optional[FrequencyReport] = None

    def _move(self, target: GateState) -> GateState:
        if target not in _TRANSITIONS.get(self.state, ()):
            raise RuntimeError(f"illegal gate transition {self.state.value} -> {target.value}")
        logger.debug("Frequency gate: %s -> %s", self.state.value, target.value)
        self.state = target
        return target

    def evaluate(self, report: FrequencyReport) -> GateState:
        self.report = report
        if not report.has_negative:
            return self._move(GateState.CLEAN)
        self.prompt = format_prompt(report)
        return self._move(GateState.FLAGGED)

    def resolve(self) -> GateState:
        """Ask for a decision on a flagged report, blocking until it arrives."""
        if self.state is not GateState.FLAGGED:
            raise RuntimeError(f"gate is {self.state.value}; only a flagged gate asks for a decision")
        if self.decide is None:
            logger.warning("No decision callback registered; rejecting flagged frequencies.")
            return self._move(GateState.REJECTED)
        answer = self.decide(self.prompt or "")
        if isinstance(answer, Future):
            answer = answer.result()
        return self._move(GateState.APPROVED if bool(answer) else GateState.REJECTED)

    def check(self, report: FrequencyReport) -> bool:
        """Evaluate ``report`` and, if flagged, resolve it. True when the run may continue."""
        if self.evaluate(report) is GateState.FLAGGED:
            self.resolve()
        return self.state.proceeds
