from pathlib import Path

import yaml

from netspec_agent.main import main

SPEC = """
serviceNetwork: [172.30.0.0/16]
clusterNetwork:
  - cidr: 10.128.0.0/15
defaultNetwork:
  type: Kuryr
"""

FACTS = """
appliedReleaseVersion: 4.13.2
kuryr:
  octaviaVersion: v2.11
  clusterID: cluster-abc
"""


def write_inputs(tmp_path: Path, spec: str = SPEC):
    spec_path = tmp_path / "network.yaml"
    facts_path = tmp_path / "facts.yaml"
    spec_path.write_text(spec)
    facts_path.write_text(FACTS)
    return spec_path, facts_path


def test_main_writes_objects_and_applied_spec(tmp_path: Path):
    spec_path, facts_path = write_inputs(tmp_path)
    output = tmp_path / "out" / "objects.yaml"
    output.parent.mkdir()

    rc = main(["--spec", str(spec_path), "--facts", str(facts_path), "--output", str(output)])

    assert rc == 0
    documents = list(yaml.safe_load_all(output.read_text()))
    assert documents[0]["kind"] == "Namespace"
    applied = yaml.safe_load((output.parent / "applied-spec.yaml").read_text())
    assert applied["defaultNetwork"]["kuryrConfig"]["openStackServiceNetwork"] == "172.30.0.0/15"
    assert applied["deployKubeProxy"] is False


def test_main_rejects_invalid_spec(tmp_path: Path, capsys):
    spec_path, facts_path = write_inputs(tmp_path, SPEC.replace("172.30.0.0/16", "bogus"))
    output = tmp_path / "objects.yaml"

    rc = main(["--spec", str(spec_path), "--facts", str(facts_path), "--output", str(output)])

    assert rc == 1
    assert not output.exists()
    assert "error: " in capsys.readouterr().err


def test_main_rejects_unsafe_change_against_previous(tmp_path: Path):
    spec_path, facts_path = write_inputs(tmp_path)
    previous = tmp_path / "applied.yaml"
    args = ["--spec", str(spec_path), "--facts", str(facts_path), "--previous", str(previous),
            "--output", str(tmp_path / "objects.yaml")]

    assert main(args) == 0
    assert previous.exists()

    spec_path.write_text(SPEC.replace("172.30.0.0/16", "172.31.0.0/16"))
    assert main(args) == 1


def test_main_unknown_type(tmp_path: Path):
    spec_path, _ = write_inputs(tmp_path, SPEC.replace("Kuryr", "OpenShiftSDN"))

    assert main(["--spec", str(spec_path)]) == 1
