from __future__ import annotations

import json

from typer.testing import CliRunner

import geocascade.cli
from geocascade.errors import NetworkError
from geocascade.runtime import Runtime



def _combined_output(result) -> str:
    try:
        return result.stdout + result.stderr
    except Exception:
        return result.stdout


def _use_fake_remote(monkeypatch, remote):
    monkeypatch.setattr(
        geocascade.cli,
        "_build_runtime",
        lambda settings: Runtime(settings, remote=remote),
    )


def test_init_creates_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    first = runner.invoke(geocascade.cli.app, ["init", "--base-url", "https://geo.example/api"])
    second = runner.invoke(geocascade.cli.app, ["init"])

    assert first.exit_code == 0
    config_text = (tmp_path / ".geocascade_config" / "config.toml").read_text(encoding="utf-8")
    assert 'base_url = "https://geo.example/api"' in config_text
    assert second.exit_code == 2


def test_show_requires_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(geocascade.cli.app, ["show"])

    assert result.exit_code == 2
    assert "geocascade init" in _combined_output(result)


def test_show_lists_countries(monkeypatch, isolated_env, remote):
    _use_fake_remote(monkeypatch, remote)

    result = CliRunner().invoke(geocascade.cli.app, ["show"])

    assert result.exit_code == 0
    assert "Canada" in result.stdout
    assert "USA" in result.stdout


def test_select_cascades_and_persists(monkeypatch, isolated_env, remote):
    _use_fake_remote(monkeypatch, remote)
    runner = CliRunner()

    first = runner.invoke(geocascade.cli.app, ["select", "country", "1", "--format", "json"])
    second = runner.invoke(geocascade.cli.app, ["select", "state", "11", "--format", "json"])
    shown = runner.invoke(geocascade.cli.app, ["show", "--format", "json"])

    assert first.exit_code == 0
    snapshot = json.loads(first.stdout)
    assert [item["name"] for item in snapshot["levels"]["state"]["items"]] == ["Ohio", "Texas"]

    assert second.exit_code == 0
    assert [item["name"] for item in json.loads(second.stdout)["levels"]["city"]["items"]] == [
        "Austin",
        "Dallas",
    ]

    restored = json.loads(shown.stdout)
    assert restored["levels"]["country"]["selected_id"] == 1
    assert restored["levels"]["state"]["selected_name"] == "Texas"
    assert remote.calls_for("states") == [1]


def test_select_none_clears_lower_levels(monkeypatch, isolated_env, remote):
    _use_fake_remote(monkeypatch, remote)
    runner = CliRunner()
    runner.invoke(geocascade.cli.app, ["select", "country", "2"])

    result = runner.invoke(geocascade.cli.app, ["select", "country", "none", "--format", "json"])

    snapshot = json.loads(result.stdout)
    assert result.exit_code == 0
    assert snapshot["levels"]["country"]["selected_id"] == -1
    assert snapshot["levels"]["state"]["state"] == "idle"


def test_failed_load_exits_nonzero(monkeypatch, isolated_env, remote):
    remote.failures["countries"] = NetworkError("remote request timed out")
    _use_fake_remote(monkeypatch, remote)

    result = CliRunner().invoke(geocascade.cli.app, ["show", "--retry", "1"])

    assert result.exit_code == 1
    assert "timed out" in result.stdout
    assert remote.calls_for("countries") == [-1, -1]


def test_usage_errors(monkeypatch, isolated_env, remote):
    _use_fake_remote(monkeypatch, remote)
    runner = CliRunner()

    assert runner.invoke(geocascade.cli.app, ["select", "planet", "1"]).exit_code == 2
    assert runner.invoke(geocascade.cli.app, ["select", "country", "abc"]).exit_code == 2
    assert runner.invoke(geocascade.cli.app, ["show", "--format", "xml"]).exit_code == 2


def test_doctor_outputs_json(monkeypatch, isolated_env, remote):
    _use_fake_remote(monkeypatch, remote)

    result = CliRunner().invoke(geocascade.cli.app, ["doctor"])

    assert result.exit_code == 0
    parsed = json.loads(result.stdout)
    assert "core_version" in parsed
    assert parsed["cache_rows"]["countries"] == 0


def test_doctor_text_format(monkeypatch, isolated_env, remote):
    _use_fake_remote(monkeypatch, remote)

    result = CliRunner().invoke(geocascade.cli.app, ["doctor", "--format", "text"])

    assert result.exit_code == 0
    assert "Doctor Report" in result.stdout
