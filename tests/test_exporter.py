import json

import pytest
from ruamel.yaml import YAML

from orphanscan.core.errors import ReportWriteError
from orphanscan.core.models import CountMode, CountResult, Namespace, NamespaceReport, RunReport
from orphanscan.report.exporter import ReportExporter


def sample_report():
    return RunReport(
        mode=CountMode.SIMPLE,
        finished_at=1_700_000_100.0,
        started_at=1_700_000_000.0,
        namespaces=[
            NamespaceReport(
                Namespace("db.orders"), CountMode.SIMPLE, reported_count=153, actual_count=150,
                per_shard=[CountResult("shardA", 100, 100), CountResult("shardB", 52, 50)],
            ),
            NamespaceReport(Namespace("db.users"), CountMode.SIMPLE, error="shard down"),
        ],
    )


def test_yaml_report_round_trips_to_the_same_data():
    text = ReportExporter().render(sample_report(), "yaml")
    data = YAML(typ="safe").load(text)

    assert data == json.loads(json.dumps(sample_report().to_dict()))
    assert data["total_orphans"] == 2
    assert data["skipped"] == ["db.users"]


def test_yaml_keys_follow_reading_order():
    text = ReportExporter().render(sample_report(), "yaml")
    lines = [line for line in text.splitlines() if not line.startswith(" ")]
    top_keys = [line.split(":")[0] for line in lines if ":" in line]
    assert top_keys[:3] == ["mode", "started_at", "finished_at"]
    assert top_keys[-1] == "namespaces"


def test_json_report():
    data = json.loads(ReportExporter().render(sample_report(), "json"))
    orders = data["namespaces"][0]
    assert orders["orphans"] == 2
    assert orders["per_shard"][1] == {
        "shard": "shardB", "reported_count": 52, "actual_count": 50, "orphans": 2,
    }


def test_write_is_atomic(tmp_path):
    target = tmp_path / "reports" / "orphans.yaml"
    written = ReportExporter().write(sample_report(), str(target))

    assert written == target.resolve()
    assert target.exists()
    assert list(target.parent.glob("*.orphanscan.tmp")) == []


def test_write_under_a_file_raises_report_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")

    with pytest.raises(ReportWriteError):
        ReportExporter().write(sample_report(), str(blocker / "orphans.yaml"))


def test_failed_replace_leaves_no_temp_file(tmp_path, monkeypatch):
    def refuse(src, dst):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr("orphanscan.report.exporter.os.replace", refuse)
    target = tmp_path / "orphans.yaml"

    with pytest.raises(ReportWriteError, match="read-only filesystem"):
        ReportExporter().write(sample_report(), str(target))
    assert list(tmp_path.iterdir()) == []
