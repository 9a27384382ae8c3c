"""Tests for configuration loading and validation."""

import json
import os

import pytest

from vrf_raffle.utils.config import NETWORK_PRESETS, build_raffle_config, get_config_value, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith(("RAFFLE_", "ORACLE_", "BLOCKCHAIN_", "OPERATOR_", "SERVER_")):
            monkeypatch.delenv(key)


def write_config(tmp_path, data):
    path = tmp_path / "raffle.conf"
    path.write_text(json.dumps(data))
    return str(path)


class TestLoadConfig:
    def test_missing_file_uses_local_preset(self, tmp_path):
        config = load_config(str(tmp_path / "absent.conf"))

        assert config["raffle"]["network"] == "local"
        assert config["raffle"]["entrance_fee"] == 10**16
        assert config["oracle"]["mode"] == "local"

    def test_file_overrides_preset(self, tmp_path):
        path = write_config(tmp_path, {"raffle": {"interval": 120}, "server": {"port": 7000}})

        config = load_config(path)

        assert config["raffle"]["interval"] == 120
        assert config["raffle"]["entrance_fee"] == 10**16
        assert config["server"]["port"] == 7000

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, {"raffle": {"interval": 120}})
        monkeypatch.setenv("RAFFLE_INTERVAL", "45")
        monkeypatch.setenv("OPERATOR_CHECK_INTERVAL", "3")

        config = load_config(path)

        assert config["raffle"]["interval"] == "45"
        assert config["operator"]["check_interval"] == "3"

    def test_config_file_from_env(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, {"raffle": {"draw_timeout": 900}})
        monkeypatch.setenv("RAFFLE_CONFIG_FILE", path)

        config = load_config()

        assert config["raffle"]["draw_timeout"] == 900
        assert "config_file" not in config["raffle"]

    def test_only_local_preset_ships(self, tmp_path, monkeypatch):
        assert list(NETWORK_PRESETS) == ["local"]

        monkeypatch.setenv("RAFFLE_NETWORK", "sepolia")
        with pytest.raises(ValueError):
            load_config(str(tmp_path / "absent.conf"))

    def test_chain_mode_configured_by_file(self, tmp_path):
        path = write_config(
            tmp_path,
            {
                "oracle": {"mode": "chain"},
                "blockchain": {"chain_id": 11155111, "coordinator_address": "0x00000000000000000000000000000000000C0de1"},
            },
        )

        config = load_config(path)

        assert config["raffle"]["network"] == "local"
        assert config["oracle"]["mode"] == "chain"
        assert config["blockchain"]["chain_id"] == 11155111

    def test_unknown_network_rejected(self, tmp_path):
        path = write_config(tmp_path, {"raffle": {"network": "moon"}})
        with pytest.raises(ValueError):
            load_config(path)

    def test_get_config_value(self):
        config = {"a": {"b": {"c": 1}}}
        assert get_config_value(config, "a.b.c") == 1
        assert get_config_value(config, "a.x", "fallback") == "fallback"
        assert get_config_value(config, "a.b.c.d") is None


class TestBuildRaffleConfig:
    def test_env_strings_are_parsed(self):
        raffle = build_raffle_config(
            {"raffle": {"entrance_fee": "0x2386f26fc10000", "interval": "30", "num_words": "2"}}
        )

        assert raffle.entrance_fee == 10**16
        assert raffle.interval == 30
        assert raffle.num_words == 2
        assert raffle.coordinator is None

    @pytest.mark.parametrize(
        "section",
        [
            {"interval": 30},
            {"entrance_fee": 0, "interval": 30},
            {"entrance_fee": 1, "interval": -1},
            {"entrance_fee": "lots", "interval": 30},
        ],
    )
    def test_invalid_values_rejected(self, section):
        with pytest.raises(ValueError):
            build_raffle_config({"raffle": section})

    def test_chain_mode_uses_coordinator_address(self):
        config = {
            "raffle": {"entrance_fee": 1, "interval": 0},
            "oracle": {"mode": "chain"},
            "blockchain": {"coordinator_address": "0x9DdfaCa8183c41ad55329BdeeD9F6A8d53168B1B"},
        }
        assert build_raffle_config(config).coordinator == "0x9DdfaCa8183c41ad55329BdeeD9F6A8d53168B1B"

    def test_local_mode_leaves_coordinator_unset(self):
        config = {
            "raffle": {"entrance_fee": 1, "interval": 0},
            "blockchain": {"coordinator_address": "0x9DdfaCa8183c41ad55329BdeeD9F6A8d53168B1B"},
        }
        assert build_raffle_config(config).coordinator is None
