"""CLI tests for the evidence maintenance commands."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from evidence_engine.cli.main import app, build_settings, load_config_file
from evidence_engine.config.settings import EvidenceSettings
from evidence_engine.core.exceptions import ConfigurationError
from evidence_engine.core.utils.logging import ROOT_LOGGER_NAME
from evidence_engine.evidence.store import EvidenceStore
from tests.factories.collectors import StepRecordingCollector

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_package_logger():
    """The CLI installs a Rich handler; undo it so caplog keeps working elsewhere."""

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(package_logger.handlers)
    level, propagate = package_logger.level, package_logger.propagate
    yield
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate


@pytest.fixture()
def completed_run(settings: EvidenceSettings) -> Path:
    """Evidence root holding one completed collection, ``run-1``."""

    async def _run() -> None:
        store = EvidenceStore(settings, [StepRecordingCollector("recorder")])
        await store.start_collection("run-1")
        await store.collect_for_scenario("run-1", "scenario-1", "Checkout")
        await store.collect_for_step("run-1", "scenario-1", "step-1", "When I pay", "failed")
        await store.complete_collection("run-1")

    asyncio.run(_run())
    return settings.evidence_path


def test_stats_on_empty_tree(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--evidence-path", str(tmp_path / "evidence"), "stats"])

    assert result.exit_code == 0
    assert "Manifests: 0" in result.output


def test_stats_counts_collection_files(completed_run: Path) -> None:
    result = runner.invoke(app, ["-p", str(completed_run), "stats"])

    assert result.exit_code == 0
    assert "Manifests: 1" in result.output
    assert "screenshots" in result.output


def test_verify_completed_run(completed_run: Path) -> None:
    result = runner.invoke(app, ["-p", str(completed_run), "verify", "run-1"])

    assert result.exit_code == 0
    assert "All 3 items verified" in result.output


def test_verify_unknown_execution_fails(tmp_path: Path) -> None:
    result = runner.invoke(app, ["-p", str(tmp_path), "verify", "nope"])

    assert result.exit_code == 1
    assert "No evidence collection found" in result.output


def test_verify_reports_tampered_files(completed_run: Path) -> None:
    screenshot = next((completed_run / "screenshots" / "run-1").iterdir())
    screenshot.write_bytes(b"tampered")

    result = runner.invoke(app, ["-p", str(completed_run), "verify", "run-1"])

    assert result.exit_code == 1
    assert "1 of 3 items failed verification" in result.output


def test_summary_as_json(completed_run: Path) -> None:
    result = runner.invoke(app, ["-p", str(completed_run), "summary", "run-1", "--json"])

    assert result.exit_code == 0
    assert '"totalItems": 3' in result.output


def test_extract_rejects_unreadable_archive(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.json.gz"
    bogus.write_bytes(b"nope")

    result = runner.invoke(app, ["-p", str(tmp_path), "extract", str(bogus), str(tmp_path / "out")])

    assert result.exit_code == 1


def test_invalid_config_file_exits_non_zero(tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text("- not\n- a mapping\n")

    result = runner.invoke(app, ["--config", str(config), "stats"])

    assert result.exit_code == 1


def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert "evidence-engine" in result.output


class TestConfigLoading:
    def test_yaml_and_json_files(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "settings.yml"
        yaml_file.write_text("retention_days: 3\nmetrics:\n  interval_ms: 1000\n")
        json_file = tmp_path / "settings.json"
        json_file.write_text('{"compress_evidence": false}')

        assert load_config_file(str(yaml_file)) == {"retention_days": 3, "metrics": {"interval_ms": 1000}}
        assert load_config_file(str(json_file)) == {"compress_evidence": False}

    def test_missing_and_unsupported_files(self, tmp_path: Path) -> None:
        toml_file = tmp_path / "settings.toml"
        toml_file.write_text("retention_days = 3")

        with pytest.raises(ConfigurationError):
            load_config_file(str(tmp_path / "absent.yaml"))
        with pytest.raises(ConfigurationError):
            load_config_file(str(toml_file))

    def test_evidence_path_override(self, tmp_path: Path) -> None:
        config = tmp_path / "settings.yaml"
        config.write_text("evidence_path: from-file\nretention_days: 2\n")

        settings = build_settings(str(config), str(tmp_path / "override"))

        assert settings.evidence_path == tmp_path / "override"
        assert settings.retention_days == 2
