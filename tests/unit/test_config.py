"""Unit tests for ScanConfig.from_env."""

import pytest

from scanner.config import DEFAULT_STORE_PATH, ScanConfig
from scanner.errors import ConfigError


class TestFromEnv:
    def test_defaults(self):
        config = ScanConfig.from_env({})
        assert config.gemini_model == "gemini-2.5-flash"
        assert config.min_request_interval == 6.0
        assert config.max_retries == 3
        assert config.rate_limit_base_wait == 10.0
        assert config.retry_wait == 2.0
        assert config.batch_size == 5
        assert config.star_threshold == 1000
        assert config.unchanged_check_enabled
        assert config.star_check_enabled
        assert config.trusted_owners == ()
        assert config.store_path == DEFAULT_STORE_PATH
        assert config.results_dir is None
        assert config.github_token is None

    def test_overrides(self):
        config = ScanConfig.from_env({
            "GEMINI_API_KEY": "key",
            "GITHUB_TOKEN": "ghp_x",
            "GEMINI_MODEL": "gemini-2.5-pro",
            "GEMINI_MIN_REQUEST_INTERVAL": "1.5",
            "SCAN_BATCH_SIZE": "10",
            "TRUSTED_REPO_STAR_THRESHOLD": "50",
            "TRUSTED_OWNERS": "Acme, octo-dev ,,",
            "SCAN_RESULTS_DIR": "/tmp/results",
            "LOG_LEVEL": "debug",
        })
        assert config.gemini_api_key == "key"
        assert config.gemini_model == "gemini-2.5-pro"
        assert config.min_request_interval == 1.5
        assert config.batch_size == 10
        assert config.star_threshold == 50
        assert config.trusted_owners == ("acme", "octo-dev")
        assert config.results_dir == "/tmp/results"
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("value,enabled", [("false", False), ("FALSE", False), ("no", True), ("0", True), ("", True)])
    def test_only_false_disables_checks(self, value, enabled):
        config = ScanConfig.from_env({"ENABLE_UNCHANGED_REPO_CHECK": value, "ENABLE_STAR_THRESHOLD_CHECK": value})
        assert config.unchanged_check_enabled is enabled
        assert config.star_check_enabled is enabled

    def test_non_numeric_value(self):
        with pytest.raises(ConfigError, match="SCAN_BATCH_SIZE"):
            ScanConfig.from_env({"SCAN_BATCH_SIZE": "five"})

    def test_negative_value(self):
        with pytest.raises(ConfigError):
            ScanConfig.from_env({"GEMINI_RETRY_WAIT": "-1"})

    def test_zero_batch_size(self):
        with pytest.raises(ConfigError):
            ScanConfig.from_env({"SCAN_BATCH_SIZE": "0"})

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("TRUSTED_REPO_STAR_THRESHOLD", "5")
        assert ScanConfig.from_env().star_threshold == 5
