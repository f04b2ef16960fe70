"""
Tests for settings, run ids, events and the smoke check.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from stackpact.config import DEFAULT_EDGE_PORTS, Settings, parse_assignments
from stackpact.events import EventLog, events_path, read_events, read_run_events
from stackpact.ids import is_valid_run_id, new_run_id
from stackpact.smoke import app_url, run_smoke_check


class TestSettings:
    """Test settings from environment and policy file."""

    def test_defaults(self, tmp_path):
        settings = Settings.from_env()
        assert settings.home == (tmp_path / "home").resolve()
        assert settings.arm_file == settings.home / "ARMED"
        assert settings.edge_ports == DEFAULT_EDGE_PORTS
        assert settings.events_dir is None

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STACKPACT_ARM_FILE", str(tmp_path / "armed"))
        monkeypatch.setenv("STACKPACT_APPLY_TIMEOUT", "42")
        settings = Settings.from_env()
        assert settings.arm_file == (tmp_path / "armed").resolve()
        assert settings.apply_timeout == 42.0

    def test_bad_timeout(self, monkeypatch):
        monkeypatch.setenv("STACKPACT_APPLY_TIMEOUT", "soon")
        with pytest.raises(ValueError):
            Settings.from_env()

    def test_policy_file_in_cwd(self, tmp_path):
        (tmp_path / "stackpact.yaml").write_text(
            "edge_ports: [8080, 8443]\n"
            "disabled_rules: [label-discovery]\n"
            "team: payments\n"
        )
        settings = Settings.from_env()
        assert settings.edge_ports == (8080, 8443)
        assert settings.disabled_rules == ("label-discovery",)
        assert settings.extra == {"team": "payments"}

    def test_explicit_policy_file(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("ingress_role_value: edge\n")
        assert Settings.from_env(str(path)).ingress_role_value == "edge"

    def test_policy_file_not_mapping(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            Settings.from_env(str(path))

    def test_missing_policy_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.from_env(str(tmp_path / "missing.yaml"))


class TestAssignments:
    """Test KEY=VALUE parsing."""

    def test_parse(self):
        assert parse_assignments(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}

    def test_missing_equals(self):
        with pytest.raises(ValueError, match="Invalid assignment"):
            parse_assignments(["A"])

    def test_empty_key(self):
        with pytest.raises(ValueError, match="Key must not be empty"):
            parse_assignments(["=1"])


class TestRunIds:
    def test_format(self):
        run_id = new_run_id()
        assert is_valid_run_id(run_id)
        assert not is_valid_run_id("d-20240101-000000-abcd")

    @pytest.mark.parametrize("run_id", ["", "r-2024-000000-abcd", "r-20240101-000000-ABCD", "../../etc/passwd", "r-20240101-000000-abcd/x"])
    def test_malformed(self, run_id):
        assert not is_valid_run_id(run_id)


class TestEvents:
    """Test NDJSON event recording."""

    def test_emit_and_read(self, tmp_path):
        log = EventLog("r-20260101-000000-abcd", tmp_path)
        log.emit("RESOLVING", {"environment": "dev"})
        log.emit("DONE", {})
        assert log.types() == ["RESOLVING", "DONE"]
        assert [e["type"] for e in read_events(log.path)] == ["RESOLVING", "DONE"]

    def test_secret_keys_redacted(self):
        log = EventLog("r-20260101-000000-abcd")
        event = log.emit("VIOLATION", {"DB_PASSWORD": "hunter2", "value": "x"})
        assert event["data"]["DB_PASSWORD"] == "[REDACTED]"
        assert log.path is None

    def test_read_skips_malformed(self, tmp_path):
        path = tmp_path / "events.ndjson"
        path.write_text('{"type": "A"}\nnot json\n{"type": "B"}\n')
        assert [e["type"] for e in read_events(path)] == ["A", "B"]

    def test_run_id_checked_before_path(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid run id"):
            EventLog("../../escape", tmp_path)
        with pytest.raises(ValueError):
            events_path(tmp_path, "r-1")
        assert not list(tmp_path.glob("*.ndjson"))

    def test_read_run_events(self, tmp_path):
        log = EventLog("r-20260101-000000-abcd", tmp_path)
        log.emit("DONE", {})
        assert log.path == events_path(tmp_path, "r-20260101-000000-abcd")
        assert [e["type"] for e in read_run_events(tmp_path, "r-20260101-000000-abcd")] == ["DONE"]


class TestSmokeCheck:
    """Test the post-apply smoke check."""

    def test_app_url(self):
        assert app_url("acctdemo.example.com") == "https://acctdemo.example.com"

    @patch("stackpact.smoke.requests.get")
    def test_success(self, mock_get):
        mock_get.return_value = Mock(status_code=200)
        result = run_smoke_check("https://acctdemo.example.com", "/health", retries=1)
        assert result.success
        mock_get.assert_called_once_with("https://acctdemo.example.com/health", timeout=10)

    @patch("stackpact.smoke.time.sleep")
    @patch("stackpact.smoke.requests.get")
    def test_retries_then_fails(self, mock_get, mock_sleep):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        result = run_smoke_check("https://acctdemo.example.com", retries=3, delay=1)
        assert not result.success
        assert mock_get.call_count == 3
        assert mock_sleep.call_count == 2
        assert result.details["attempts"] == 3
