"""Unit tests for EngineConfig loading."""

import json

import pytest
from pydantic import ValidationError

from flasher.config import EngineConfig, load_config


@pytest.mark.unit
class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.json")

        assert config == EngineConfig()
        assert config.magic_baudrates == [150, 300, 600]
        assert config.chip_family == "ESP32-S3"
        assert config.report_url is None

    def test_defaults_for_none(self):
        assert load_config(None).api_port == 12316

    def test_overrides_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "port": "/dev/ttyACM0",
                    "power_cycle_timeout": 60,
                    "download_proxy": None,
                    "driver_factory": "zwave_driver.adapter:create",
                }
            )
        )

        config = load_config(path)

        assert config.port == "/dev/ttyACM0"
        assert config.power_cycle_timeout == 60
        assert config.download_proxy is None
        assert config.driver_factory == "zwave_driver.adapter:create"
        assert config.baudrate == 115200

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"menu_timeout": 0}))

        with pytest.raises(ValidationError):
            load_config(path)

    def test_empty_magic_baudrates_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig(magic_baudrates=[])
