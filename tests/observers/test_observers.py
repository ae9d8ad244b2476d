import json
import logging

from kubestand.observers.console import ConsoleObserver
from kubestand.observers.dispatcher import EventBus
from kubestand.observers.events import (
    CommandFailed,
    PlanComputed,
    RunSummary,
    StepSkipped,
    StepStarted,
    new_ctx,
)
from kubestand.observers.jsonfile import JsonFileObserver
from kubestand.observers.logger import LoggerObserver


class Boom:
    def notify(self, ev): raise RuntimeError("observer bug")


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_bus_isolates_failing_observers(capture):
    ctx = new_ctx(direction="provision")
    EventBus([Boom(), capture]).emit(PlanComputed(order=["a"], **ctx))
    assert len(capture.events) == 1


def test_json_file_observer_writes_one_line_per_event(tmp_path):
    ctx = new_ctx(direction="provision", run_id="run-1")
    ob = JsonFileObserver(tmp_path / "events", "run-1")
    ob.notify(StepStarted(step="prep", label="Prep", index=1, total=3, critical=True, **ctx))
    ob.notify(StepSkipped(step="prep", node="cp", reason="already complete", **ctx))

    lines = (tmp_path / "events" / "run-1.jsonl").read_text().splitlines()
    records = [json.loads(line) for line in lines]
    assert [r["type"] for r in records] == ["StepStarted", "StepSkipped"]
    assert records[1]["node"] == "cp"
    assert records[0]["run_id"] == "run-1"


def test_console_prints_step_banner(capsys):
    ctx = new_ctx(direction="destroy")
    ob = ConsoleObserver(destroy=True)
    ob.notify(StepStarted(step="reset_worker", label="Resetting worker", index=2, total=5, critical=False, **ctx))
    ob.notify(StepSkipped(step="reset_worker", node="w1", reason="not present", **ctx))
    out = capsys.readouterr().out
    assert "🧨 [2/5] Resetting worker" in out
    assert "✔ w1: not present" in out


def test_console_reports_failures_on_stderr(capsys):
    ctx = new_ctx(direction="provision")
    ConsoleObserver().notify(CommandFailed(
        step="init", node="cp", exit_code=1, timed_out=False, critical=True, error="exit 1: boom", **ctx
    ))
    err = capsys.readouterr().err
    assert "❌ cp: exit 1: boom" in err


def test_logger_observer_levels():
    logger = logging.getLogger("kubestand.test.observer")
    logger.propagate = False
    handler = ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    ctx = new_ctx(direction="provision")

    ob = LoggerObserver(logger)
    ob.notify(PlanComputed(order=["a"], **ctx))
    ob.notify(CommandFailed(step="s", node="n", exit_code=1, timed_out=False, critical=False, error="x", **ctx))
    ob.notify(RunSummary(status="aborted", succeeded=1, skipped=0, failed=1, **ctx))

    levels = [r.levelno for r in handler.records]
    assert levels == [logging.DEBUG, logging.WARNING, logging.ERROR]
    assert "[EVENT] PlanComputed" in handler.records[0].getMessage()
    logger.removeHandler(handler)
