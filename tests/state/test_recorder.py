from pathlib import Path

from kubestand.state.recorder import MAX_OUTPUT, Outcome, RunRecorder, Status
from kubestand.utils.redact import REDACTED, SecretStore


def test_status_follows_latest_entry(recorder):
    assert recorder.status("init", "cp") == Status.UNKNOWN
    recorder.append("r1", "provision", "init", "cp", Outcome.FAILED, exit_code=1)
    assert recorder.status("init", "cp") == Status.FAILED
    recorder.append("r2", "provision", "init", "cp", Outcome.SUCCESS, exit_code=0)
    assert recorder.status("init", "cp") == Status.SUCCESS
    recorder.append("r3", "provision", "init", "cp", Outcome.TIMEOUT)
    assert recorder.status("init", "cp") == Status.FAILED


def test_skipped_counts_as_complete(recorder):
    recorder.append("r1", "provision", "install_k8s", "w1", Outcome.SKIPPED)
    assert recorder.status("install_k8s", "w1") == Status.SUCCESS


def test_record_is_append_only_and_survives_reload(tmp_path: Path):
    path = tmp_path / "record.jsonl"
    first = RunRecorder(path)
    first.append("r1", "provision", "prep", "cp", Outcome.SUCCESS)
    first.append("r1", "provision", "prep", "w1", Outcome.FAILED, exit_code=2, output="apt broke")
    before = path.read_text()

    second = RunRecorder(path)
    second.append("r2", "provision", "prep", "w1", Outcome.SUCCESS)
    assert path.read_text().startswith(before)
    assert second.status("prep", "cp") == Status.SUCCESS
    assert second.status("prep", "w1") == Status.SUCCESS
    assert [e.run_id for e in second.entries()] == ["r1", "r1", "r2"]


def test_unreadable_lines_are_ignored(tmp_path: Path):
    path = tmp_path / "record.jsonl"
    RunRecorder(path).append("r1", "provision", "prep", "cp", Outcome.SUCCESS)
    with path.open("a") as f:
        f.write("{not json\n")
    rec = RunRecorder(path)
    assert rec.status("prep", "cp") == Status.SUCCESS
    assert len(list(rec.entries())) == 1


def test_output_is_redacted_and_truncated(tmp_path: Path):
    secrets = SecretStore()
    secrets.add("abcdef.0123456789abcdef")
    rec = RunRecorder(tmp_path / "r.jsonl", secrets=secrets)
    entry = rec.append("r1", "provision", "join", "w1", Outcome.FAILED,
                       output="token abcdef.0123456789abcdef rejected")
    assert entry.output == f"token {REDACTED} rejected"
    assert "abcdef.0123456789abcdef" not in (tmp_path / "r.jsonl").read_text()

    big = rec.append("r1", "provision", "prep", "w1", Outcome.FAILED, output="x" * (MAX_OUTPUT + 100))
    assert len(big.output) <= MAX_OUTPUT + 4


def test_invalidate_resets_known_pairs_only(recorder):
    recorder.append("r1", "provision", "prep", "cp", Outcome.SUCCESS)
    recorder.append("r1", "provision", "prep", "w1", Outcome.FAILED)
    out = recorder.invalidate("r2", [("prep", "cp"), ("prep", "w1"), ("join", "w1")])
    assert [(e.step, e.node) for e in out] == [("prep", "cp"), ("prep", "w1")]
    assert all(e.outcome == Outcome.INVALIDATED for e in out)
    assert recorder.status("prep", "cp") == Status.UNKNOWN
    assert recorder.status("prep", "w1") == Status.UNKNOWN
