"""Tests for the fleetwatch CLI."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from fleetwatch.cli import main


@pytest.fixture
def runner():
    return CliRunner()


def _write_config(tmp_path, data: dict):
    path = tmp_path / "monitoring.json"
    path.write_text(json.dumps(data))
    return str(path)


class TestCheckConfig:
    """Test the `check-config` command."""

    def test_valid(self, runner: CliRunner, tmp_path) -> None:
        path = _write_config(tmp_path, {
            "thresholds": [{
                "threshold_id": "safety",
                "entity_id": "*",
                "metric_name": "safety_incident_rate",
                "warning_value": 1.0,
                "critical_value": 2.0,
            }],
            "rules": [{
                "rule_id": "fatigue",
                "conditions": [{"metric_name": "hours_driven", "operator": "gt", "value": 10}],
            }],
        })

        result = runner.invoke(main, ["check-config", path])

        assert result.exit_code == 0, result.output
        assert "Thresholds: 1  Rules: 1" in result.output
        assert "Configuration valid" in result.output

    def test_invalid_entries_reported(self, runner: CliRunner, tmp_path) -> None:
        path = _write_config(tmp_path, {
            "thresholds": [{
                "threshold_id": "inverted",
                "entity_id": "E1",
                "metric_name": "speed",
                "warning_value": 120,
                "critical_value": 100,
            }],
            "rules": [{
                "rule_id": "broken",
                "conditions": [{"metric_name": "x", "operator": "roughly", "value": 1}],
            }],
        })

        result = runner.invoke(main, ["check-config", path])

        assert result.exit_code == 1
        assert "threshold inverted" in result.output
        assert "rule broken" in result.output
        assert "2 invalid entries" in result.output

    def test_missing_file(self, runner: CliRunner, tmp_path) -> None:
        result = runner.invoke(main, ["check-config", str(tmp_path / "nope.json")])
        assert result.exit_code != 0


class TestInitDb:
    """Test the `init-db` command."""

    def test_creates_schema(self, runner: CliRunner) -> None:
        mock_db = AsyncMock()
        mock_repo = AsyncMock()

        with patch("fleetwatch.storage.database.Database", return_value=mock_db), \
             patch("fleetwatch.monitoring.repository.AlertRepository", return_value=mock_repo):
            result = runner.invoke(main, ["init-db"])

        assert result.exit_code == 0, result.output
        assert "Database initialized successfully" in result.output
        mock_repo.ensure_schema.assert_awaited_once()
        mock_db.close.assert_awaited_once()
