"""Tests for settings loading and logging setup."""

import json
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from sqladvisor.core.config import AISettings, LoggingSettings, Settings, get_settings, reset_settings
from sqladvisor.core.constants import DEFAULT_MODEL, DEFAULT_OLLAMA_HOST
from sqladvisor.core.logger import (
    LogContext,
    current_request_id,
    get_logger,
    request_scope,
    setup_logging_from_settings,
)
from sqladvisor.models.query_info import QueryInfo


class TestAISettings:
    def test_defaults(self) -> None:
        ai = AISettings()
        assert ai.ollama_host == DEFAULT_OLLAMA_HOST
        assert ai.model == DEFAULT_MODEL
        assert ai.stream is True
        assert ai.generate_url == f"{DEFAULT_OLLAMA_HOST}/api/generate"
        assert ai.tags_url == f"{DEFAULT_OLLAMA_HOST}/api/tags"

    @pytest.mark.parametrize(
        "host, expected",
        [
            ("localhost:11434", "http://localhost:11434"),
            ("https://gpu-box:11434/", "https://gpu-box:11434"),
            ("  http://10.0.0.5:11434  ", "http://10.0.0.5:11434"),
        ],
    )
    def test_host_normalization(self, host: str, expected: str) -> None:
        assert AISettings(ollama_host=host).ollama_host == expected

    def test_empty_host_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AISettings(ollama_host="")

    def test_timeout_bounds(self) -> None:
        with pytest.raises(ValidationError):
            AISettings(timeout=1)


class TestSettings:
    """Environment and file based configuration."""

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("SQLADVISOR_AI__MODEL", "codellama:7b")
        monkeypatch.setenv("SQLADVISOR_AI__STREAM", "false")

        settings = Settings(app_dir=tmp_path)

        assert settings.ai.model == "codellama:7b"
        assert settings.ai.stream is False

    def test_unprefixed_variables_are_ignored(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("OLLAMA_HOST", "0.0.0.0:9999")
        monkeypatch.setenv("MODEL", "llama3")
        monkeypatch.setenv("TIMEOUT", "5")
        monkeypatch.setenv("LEVEL", "DEBUG")

        settings = Settings(app_dir=tmp_path)

        assert settings.ai.ollama_host == DEFAULT_OLLAMA_HOST
        assert settings.ai.model == DEFAULT_MODEL
        assert settings.ai.timeout == AISettings.model_fields["timeout"].default
        assert settings.logging.level == "INFO"

    def test_sections_read_their_own_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SQLADVISOR_AI__TIMEOUT", "60")
        monkeypatch.setenv("SQLADVISOR_LOGGING__LEVEL", "warning")

        assert AISettings().timeout == 60
        assert LoggingSettings().level == "WARNING"

    def test_load_from_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.json"
        config_file.write_text(json.dumps({
            "ai": {"ollama_host": "gpu-box:11434", "max_plan_length": 2000},
            "logging": {"level": "debug"},
        }), encoding="utf-8")

        settings = Settings.load(config_file)

        assert settings.ai.ollama_host == "http://gpu-box:11434"
        assert settings.ai.max_plan_length == 2000
        assert settings.logging.level == "DEBUG"

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        settings = Settings.load(tmp_path / "absent.json")
        assert settings.ai.model == DEFAULT_MODEL

    def test_broken_file_gives_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.json"
        config_file.write_text("{not json", encoding="utf-8")

        settings = Settings.load(config_file)

        assert settings.ai.ollama_host == DEFAULT_OLLAMA_HOST

    def test_paths(self, tmp_path: Path) -> None:
        settings = Settings(app_dir=tmp_path)
        assert settings.config_dir == tmp_path / "config"
        assert settings.logs_dir == tmp_path / "logs"
        assert settings.settings_file == tmp_path / "config" / "settings.json"

    def test_reset_settings(self, tmp_path: Path) -> None:
        custom = Settings(app_dir=tmp_path, ai=AISettings(model="phi3:mini"))
        assert reset_settings(custom) is custom
        assert get_settings().ai.model == "phi3:mini"

    def test_unknown_level_falls_back_to_info(self) -> None:
        assert LoggingSettings(level="chatty").level == "INFO"


class TestLogging:
    def test_file_logging_from_settings(self, tmp_path: Path) -> None:
        settings = Settings(
            app_dir=tmp_path,
            logging=LoggingSettings(file_enabled=True, level="DEBUG", console_colors=False),
        )

        logger = setup_logging_from_settings(settings)
        get_logger("ai.test").info("hello from the test")
        for handler in logger.handlers:
            handler.flush()

        log_file = tmp_path / "logs" / "sqladvisor.log"
        assert log_file.exists()
        with request_scope("req-test"):
            get_logger("ai.test").debug("inside a request")
        for handler in logger.handlers:
            handler.flush()

        assert "hello from the test" in log_file.read_text(encoding="utf-8")
        assert "req-test" in log_file.read_text(encoding="utf-8")

        setup_logging_from_settings(Settings(app_dir=tmp_path))

    def test_log_context_records_duration(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("sqladvisor.test")
        with caplog.at_level(logging.INFO, logger="sqladvisor.test"):
            with LogContext(logger, "Recommendation via test") as ctx:
                pass

        assert ctx.duration >= 0
        assert "Recommendation via test... started" in caplog.text
        assert "completed in" in caplog.text


class TestQueryInfo:
    def test_averages(self) -> None:
        query = QueryInfo(
            query_text="SELECT 1",
            total_cpu_time=4_000_000,
            total_duration=8_000_000,
            total_logical_reads=1000,
            execution_count=4,
        )
        assert query.avg_cpu_time_ms == 1000.0
        assert query.avg_duration_ms == 2000.0
        assert query.avg_logical_reads == 250.0

    def test_averages_without_executions(self) -> None:
        query = QueryInfo(query_text="SELECT 1")
        assert query.avg_cpu_time_ms == 0.0
        assert query.avg_logical_reads == 0.0

    def test_preview(self) -> None:
        query = QueryInfo(query_text="x" * 250)
        assert query.query_text_preview == "x" * 200 + "..."
        assert QueryInfo(query_text="short").query_text_preview == "short"

    def test_has_plan(self) -> None:
        assert QueryInfo(query_text="SELECT 1", execution_plan_xml="<p/>").has_plan
        assert not QueryInfo(query_text="SELECT 1", execution_plan_xml="  ").has_plan


class TestRequestScope:
    def test_scope_sets_and_restores_id(self) -> None:
        assert current_request_id() == "-"
        with request_scope("req-42") as request_id:
            assert request_id == "req-42"
            assert current_request_id() == "req-42"
        assert current_request_id() == "-"

    def test_generated_ids_are_unique(self) -> None:
        with request_scope() as first:
            pass
        with request_scope() as second:
            pass
        assert first != second
        assert first.startswith("req-")
