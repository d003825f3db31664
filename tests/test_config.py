"""Tests for YAML config loading and validation."""

from pathlib import Path

import pytest
import yaml

from edgar_ingest.config import config_from_dict, load_config
from edgar_ingest.errors import ValidationError


class TestLoadConfig:
    def test_defaults(self):
        config = config_from_dict({})
        assert config.download.rate_limit_requests == 8
        assert config.pipeline.max_retries == 3
        assert config.pipeline.lookback_days == 3
        assert config.filing_type_enabled("insider")

    def test_load_yaml_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "data_dir": str(tmp_path / "data"),
            "download": {"rate_limit_requests": 5, "bogus": 1},
            "pipeline": {"skip_weekends": True},
            "filing_types": {"form6k": {"enabled": False}},
            "jobs": {"ticker_sync": {"enabled": False, "schedule": "0 6 * * 1"}},
        }))

        config = load_config(str(path))
        assert config.download.rate_limit_requests == 5
        assert config.pipeline.skip_weekends is True
        assert not config.filing_type_enabled("form6k")
        assert config.jobs["ticker_sync"].enabled is False

    def test_shipped_config_is_valid(self):
        config = load_config(str(Path(__file__).resolve().parent.parent / "config.yaml"))
        assert config.pipeline.skip_weekends is True


class TestValidateConfig:
    @pytest.mark.parametrize("raw", [
        {"download": {"rate_limit_requests": 0}},
        {"download": {"rate_limit_period": 0}},
        {"pipeline": {"max_workers": 0}},
        {"pipeline": {"retention_days": 30, "max_backfill_days": 30}},
        {"jobs": {"filing_sync": {"schedule": "every day"}}},
        {"log_level": "LOUD"},
    ])
    def test_rejects(self, raw):
        with pytest.raises(ValidationError):
            config_from_dict(raw)
