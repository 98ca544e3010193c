from pathlib import Path

import pytest
import yaml

from distro_iso_builder import cli
from distro_iso_builder.config import default_config, load_config, save_config


@pytest.fixture(autouse=True)
def no_log_files(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: kwargs.get("log_path"))


def test_generate_config_to_stdout(capsys):
    assert cli.main(["generate-config"]) == cli.EXIT_OK
    data = yaml.safe_load(capsys.readouterr().out)
    assert data["name"] == "MyLinux"
    assert data["packages"]["essential"][0] == "base"


def test_generate_config_to_file(tmp_path: Path, capsys):
    destination = tmp_path / "distro.json"
    assert cli.main(["generate-config", "-o", str(destination)]) == cli.EXIT_OK
    assert load_config(destination) == default_config()
    assert str(destination) in capsys.readouterr().out


def test_build_without_config_is_rejected(capsys):
    assert cli.main(["build"]) == cli.EXIT_INVALID_CONFIG
    assert "No configuration provided" in capsys.readouterr().err


def test_build_with_missing_config_file(tmp_path: Path):
    assert cli.main(["build", "-c", str(tmp_path / "nope.yaml")]) == cli.EXIT_INVALID_CONFIG


def test_build_plan_prints_stages(tmp_path: Path, capsys):
    code = cli.main([
        "build", "--minimal", "--plan", "-n", "PlanOS",
        "-w", str(tmp_path / "work"), "-o", str(tmp_path / "out"),
    ])
    assert code == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "[1/8] Setting up build directories" in out
    assert "PlanOS-1.0-x86_64.iso" in out
    assert not (tmp_path / "work").exists()


def test_validate_reports_invalid_config(tmp_path: Path, capsys):
    path = save_config(default_config().with_updates(version=""), tmp_path / "distro.yaml")
    assert cli.main(["validate", "-c", str(path)]) == cli.EXIT_INVALID_CONFIG
    assert "version" in capsys.readouterr().out


def test_build_mode_flags_are_exclusive():
    with pytest.raises(SystemExit):
        cli.main(["build", "--minimal", "-c", "distro.yaml"])
    with pytest.raises(SystemExit):
        cli.main(["build", "--minimal", "-v", "-q"])


def test_build_dry_run_is_passed_to_the_builder(tmp_path: Path, monkeypatch):
    seen = {}

    class RecordingBuilder:
        def __init__(self, config, work_dir, output_dir, **kwargs):
            seen.update(kwargs)

        async def build(self):
            raise cli.ValidationFailed(cli.ConfigValidator().validate(default_config().with_updates(name="")))

    monkeypatch.setattr(cli, "DistroBuilder", RecordingBuilder)
    code = cli.main(["build", "--minimal", "--dry-run", "-w", str(tmp_path / "work"), "-o", str(tmp_path / "out")])
    assert code == cli.EXIT_INVALID_CONFIG
    assert seen["dry_run"] is True
