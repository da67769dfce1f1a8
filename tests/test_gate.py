import threading
from concurrent.futures import Future

import pytest

from specflow.data.orca import FrequencyReport
from specflow.qc.gate import FrequencyGate, GateState, format_prompt


def test_negative_value_flags_the_report():
    gate = FrequencyGate()
    assert gate.evaluate(FrequencyReport((-15.3, 200.1, 450.0))) is GateState.FLAGGED
    assert gate.prompt == "Found 1 negative frequencies. Minimum frequency is -15.30 cm**-1. Continue processing?"


def test_clean_report_proceeds_without_asking():
    asked = []
    gate = FrequencyGate(lambda message: asked.append(message) or False)
    assert gate.check(FrequencyReport((12.0, 200.1))) is True
    assert gate.state is GateState.CLEAN
    assert asked == []


def test_rejection_halts_without_error():
    gate = FrequencyGate(lambda message: False)
    assert gate.check(FrequencyReport((-15.3, 200.1, 450.0))) is False
    assert gate.state is GateState.REJECTED


def test_approval_continues():
    gate = FrequencyGate(lambda message: True)
    assert gate.check(FrequencyReport((-1.0, -30.5))) is True
    assert gate.state is GateState.APPROVED


def test_decision_may_arrive_later_as_future():
    future = Future()
    gate = FrequencyGate(lambda message: future)
    timer = threading.Timer(0.05, future.set_result, args=(True,))
    timer.start()
    try:
        assert gate.check(FrequencyReport((-5.0,))) is True
    finally:
        timer.join()
    assert gate.state is GateState.APPROVED


def test_no_callback_rejects_flagged_report():
    gate = FrequencyGate()
    assert gate.check(FrequencyReport((-5.0,))) is False


def test_illegal_transitions_raise():
    gate = FrequencyGate(lambda message: True)
    with pytest.raises(RuntimeError):
        gate.resolve()
    gate.evaluate(FrequencyReport((1.0,)))
    with pytest.raises(RuntimeError):
        gate.evaluate(FrequencyReport((-1.0,)))


def test_prompt_uses_most_negative_value():
    prompt = format_prompt(FrequencyReport((-3.0, -120.456, 10.0)))
    assert prompt.startswith("Found 2 negative frequencies. Minimum frequency is -120.46")
