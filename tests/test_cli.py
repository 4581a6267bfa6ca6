import json

import pytest

from harvester import cli
from harvester.core.harvester import Harvester
from harvester.pipeline.errors import AuthorizationError
from harvester.pipeline.models import Record
from harvester.pipeline.storage import JsonSnapshotStorage, Snapshot

from conftest import FakeFetcher, build_collection, page_url


@pytest.fixture
def run_cli(tmp_path):
    def invoke(*args):
        return cli.main(["--log-dir", str(tmp_path / "logs"), *args])
    return invoke


def _install_fake_harvester(monkeypatch, responses):
    class FakeHarvester(Harvester):
        def __init__(self, config):
            super().__init__(config, fetcher=FakeFetcher(responses))

    monkeypatch.setattr(cli, "Harvester", FakeHarvester)


def test_harvest_writes_snapshot(run_cli, monkeypatch, tmp_path, capsys):
    _install_fake_harvester(monkeypatch, build_collection([["a", "b"], ["c"]]))
    snapshot_path = tmp_path / "out.json"

    code = run_cli("harvest", page_url(1), "-s", str(snapshot_path), "--detail-workers", "3")

    assert code == 0
    assert sorted(JsonSnapshotStorage(snapshot_path).load_snapshot().keys()) == ["a", "b", "c"]
    assert "HARVEST SUMMARY" in capsys.readouterr().out


def test_harvest_reports_cancelled_run(run_cli, monkeypatch, tmp_path):
    responses = build_collection([["a"]])
    responses[page_url(1)] = AuthorizationError(page_url(1), 401)
    _install_fake_harvester(monkeypatch, responses)

    code = run_cli("harvest", page_url(1), "-s", str(tmp_path / "out.json"))

    assert code == 1


def test_harvest_without_seed_url_fails(run_cli):
    assert run_cli("harvest") == 1


def test_config_create_and_validate(run_cli, tmp_path, capsys):
    output = tmp_path / "default.yaml"

    assert run_cli("config", "--create-default", "-o", str(output)) == 0
    assert output.exists()
    assert run_cli("config", "--validate", str(output)) == 0
    assert "Configuration is valid" in capsys.readouterr().out


def test_snapshot_command_counts_and_finds_records(run_cli, tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    storage = JsonSnapshotStorage(path)
    snapshot = Snapshot([Record(key="k1", detail_url="https://x.test/k1", title="One")])
    with storage.write_staging(snapshot) as staged:
        storage.commit_staging(staged)

    assert run_cli("snapshot", str(path)) == 0
    assert "1 records" in capsys.readouterr().out

    assert run_cli("snapshot", str(path), "--key", "k1") == 0
    assert json.loads(capsys.readouterr().out)["title"] == "One"

    assert run_cli("snapshot", str(path), "--key", "missing") == 1


def test_harvest_with_unreadable_snapshot_fails_cleanly(run_cli, monkeypatch, tmp_path):
    _install_fake_harvester(monkeypatch, build_collection([["a"]]))
    snapshot_path = tmp_path / "corrupt.json"
    snapshot_path.write_text("{not json", encoding="utf-8")

    assert run_cli("harvest", page_url(1), "-s", str(snapshot_path)) == 1
    assert snapshot_path.read_text(encoding="utf-8") == "{not json"
