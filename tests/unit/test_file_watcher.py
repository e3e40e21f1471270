from pathlib import Path
from threading import Event

from netspec.config import BootstrapFacts, RenderSettings
from netspec_agent.watchers.file import FileSpecWatcher
from netspec_operator import ReconcileState, Reconciler

SPEC = """
serviceNetwork: [172.30.0.0/16]
clusterNetwork:
  - cidr: 10.128.0.0/15
defaultNetwork:
  type: External
"""


def build_watcher(path: Path, results: list, facts_loader=BootstrapFacts) -> FileSpecWatcher:
    return FileSpecWatcher(
        reconciler=Reconciler(settings=RenderSettings(release_version="4.14.0")),
        path=path,
        facts_loader=facts_loader,
        interval=0.1,
        stop_event=Event(),
        on_result=results.append,
    )


def test_file_watcher_reconciles_on_change(tmp_path: Path):
    spec_file = tmp_path / "network.yaml"
    results: list = []
    watcher = build_watcher(spec_file, results)

    assert watcher.poll() is None

    spec_file.write_text(SPEC)
    result = watcher.poll()
    assert result.state is ReconcileState.RENDERED
    assert watcher.previous == result.spec
    assert results == [result]

    assert watcher.poll() is None
    assert len(results) == 1


def test_rejected_change_keeps_previous(tmp_path: Path):
    spec_file = tmp_path / "network.yaml"
    results: list = []
    watcher = build_watcher(spec_file, results)
    spec_file.write_text(SPEC)
    accepted = watcher.poll()

    spec_file.write_text(SPEC.replace("172.30.0.0/16", "172.31.0.0/16"))
    rejected = watcher.poll()

    assert rejected.state is ReconcileState.REJECTED
    assert "cannot change ServiceNetwork" in str(rejected.errors[0])
    assert watcher.previous == accepted.spec
    assert results == [accepted, rejected]


def test_unreadable_spec_is_skipped(tmp_path: Path):
    spec_file = tmp_path / "network.yaml"
    results: list = []
    watcher = build_watcher(spec_file, results)

    spec_file.write_text("serviceNetwork: [unterminated\n")
    assert watcher.poll() is None

    spec_file.write_text(SPEC.replace("External", "OpenShiftSDN"))
    assert watcher.poll() is None

    assert results == []
    assert watcher.previous is None


def test_facts_failure_is_retried(tmp_path: Path):
    spec_file = tmp_path / "network.yaml"
    spec_file.write_text(SPEC)
    results: list = []
    calls: list = []

    def flaky_loader() -> BootstrapFacts:
        calls.append(None)
        if len(calls) == 1:
            raise ValueError("facts file is half written")
        return BootstrapFacts()

    watcher = build_watcher(spec_file, results, flaky_loader)

    try:
        watcher.poll()
    except ValueError:
        pass
    else:
        raise AssertionError("facts loader failure was not raised")

    result = watcher.poll()
    assert result.state is ReconcileState.RENDERED
    assert results == [result]


def test_facts_change_triggers_a_pass(tmp_path: Path):
    spec_file = tmp_path / "network.yaml"
    spec_file.write_text(SPEC)
    results: list = []
    facts = {"current": BootstrapFacts()}
    watcher = build_watcher(spec_file, results, lambda: facts["current"])

    first = watcher.poll()
    assert watcher.poll() is None

    facts["current"] = BootstrapFacts(applied_release_version="4.13.0")
    second = watcher.poll()

    assert second.version_change is not first.version_change
    assert results == [first, second]
    assert watcher.poll() is None
