"""Configuration, IDL and keypair loading."""

import json

import pytest
from solders.keypair import Keypair

from staking_client.addresses import PoolAddressingMode, SeedScheme
from staking_client.config import DEFAULT_RPC_ENDPOINT, load_config, load_idl, load_keypair
from staking_client.errors import ConfigurationError

from conftest import PROGRAM_ID


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
    monkeypatch.delenv("STAKING_PROGRAM_ID", raising=False)


def write_config(tmp_path, **values):
    path = tmp_path / "config.cfg"
    path.write_text(json.dumps(values), encoding="utf-8")
    return path


class TestLoadConfig:

    def test_defaults(self, tmp_path):
        config = load_config(write_config(tmp_path, program_id=str(PROGRAM_ID)))
        assert config["rpc_endpoints"] == [DEFAULT_RPC_ENDPOINT]
        assert config["pool_addressing"] is PoolAddressingMode.DERIVED
        assert config["seed_scheme"] is SeedScheme.CURRENT
        assert config["commitment"] == "confirmed"
        assert config["idl_path"] is None
        assert config["concurrency_limit"] == 4
        assert config["output_format"] == ["console"]
        assert config["log_level"] == "INFO"

    def test_explicit_values(self, tmp_path):
        config = load_config(
            write_config(
                tmp_path,
                program_id=str(PROGRAM_ID),
                rpc_endpoints=["https://a", "https://a", " https://b "],
                pool_addressing="Generated",
                seed_scheme="legacy",
                idl_path="idl/staking.json",
                confirm_timeout_seconds=0.2,
                output_format="json",
            )
        )
        assert config["rpc_endpoints"] == ["https://a", "https://b"]
        assert config["pool_addressing"] is PoolAddressingMode.GENERATED
        assert config["seed_scheme"] is SeedScheme.LEGACY
        assert config["idl_path"] == tmp_path / "idl" / "staking.json"
        assert config["confirm_timeout_seconds"] == 1.0
        assert config["output_format"] == ["json"]

    def test_environment_overrides(self, tmp_path, monkeypatch):
        other = str(Keypair().pubkey())
        monkeypatch.setenv("SOLANA_RPC_URL", "https://env")
        monkeypatch.setenv("STAKING_PROGRAM_ID", other)
        config = load_config(write_config(tmp_path, program_id=str(PROGRAM_ID), rpc_endpoint="https://file"))
        assert config["rpc_endpoints"] == ["https://env"]
        assert config["program_id"] == other

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "absent.cfg")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.cfg"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)

    @pytest.mark.parametrize(
        "values",
        [
            {},
            {"program_id": "not-a-key"},
            {"program_id": str(PROGRAM_ID), "pool_addressing": "random"},
            {"program_id": str(PROGRAM_ID), "commitment": "eventually"},
            {"program_id": str(PROGRAM_ID), "output_format": ["xml"]},
        ],
    )
    def test_rejected_values(self, tmp_path, values):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, **values))


class TestFiles:

    def test_load_idl(self, tmp_path, idl):
        path = tmp_path / "staking.json"
        path.write_text(json.dumps(idl), encoding="utf-8")
        assert load_idl(path)["errors"][0]["code"] == 300
        assert load_idl(None) is None

    def test_load_idl_missing(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_idl(tmp_path / "missing.json")

    def test_load_keypair(self, tmp_path):
        keypair = Keypair()
        path = tmp_path / "id.json"
        path.write_text(json.dumps(list(bytes(keypair))), encoding="utf-8")
        assert load_keypair(str(path)).pubkey() == keypair.pubkey()

    def test_load_keypair_malformed(self, tmp_path):
        path = tmp_path / "id.json"
        path.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_keypair(str(path))
