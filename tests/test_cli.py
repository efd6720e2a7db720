"""CLI commands; RPC-backed ones run against a mocked node."""

import functools
import json

import httpx
import pytest
from solders.pubkey import Pubkey

from staking_client import cli
from staking_client.addresses import get_associated_token_address, staking_data_address
from staking_client.cli import build_parser, main
from staking_client.rpc import SolanaRPCClient

from conftest import PROGRAM_ID, new_pubkey


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
    monkeypatch.delenv("STAKING_PROGRAM_ID", raising=False)
    path = tmp_path / "config.cfg"
    path.write_text(json.dumps({"program_id": str(PROGRAM_ID)}), encoding="utf-8")
    return path


def test_project_writes_report(config_path, tmp_path):
    report = tmp_path / "report.json"
    main(["--config", str(config_path), "--json", str(report), "project", "800", "1000", "1000", "0", "30", "1000", "0", "30", "30"])
    document = json.loads(report.read_text(encoding="utf-8"))
    assert document["command"] == "project"
    assert document["amount"] == 21
    assert document["reward"] == pytest.approx(21.887824897400823)


def test_addresses_for_derived_pool(config_path, tmp_path):
    initializer, mint = new_pubkey(9), new_pubkey(7)
    report = tmp_path / "addresses.json"
    main([
        "--config", str(config_path), "--json", str(report),
        "addresses", "--initializer", str(initializer), "--mint", str(mint), "--staker", str(new_pubkey(6)),
    ])
    document = json.loads(report.read_text(encoding="utf-8"))
    expected, _ = staking_data_address(initializer, mint, PROGRAM_ID)
    assert Pubkey.from_string(document["addresses"]["pool"]) == expected
    assert "staker state" in document["addresses"]


def test_addresses_without_mint_fails(config_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config_path), "addresses", "--initializer", str(new_pubkey(9))])
    assert excinfo.value.code == 1


def test_missing_config_exits(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(tmp_path / "absent.cfg"), "project", "0", "0", "0", "0", "0", "0", "0", "0", "0"])
    assert excinfo.value.code == 1


def test_rejects_bad_pubkey():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["pool", "not-a-key"])


def mock_rpc(monkeypatch, handler):
    monkeypatch.setattr(cli, "SolanaRPCClient", functools.partial(SolanaRPCClient, transport=httpx.MockTransport(handler)))


def test_balance_reports_sol_and_token(config_path, tmp_path, monkeypatch):
    owner, mint = new_pubkey(3), new_pubkey(7)

    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "getBalance":
            result = {"value": 2_000_000}
        else:
            assert body["params"][0] == str(get_associated_token_address(owner, mint))
            result = {"value": {"amount": "750", "decimals": 6}}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    mock_rpc(monkeypatch, handler)
    report = tmp_path / "balance.json"
    main(["--config", str(config_path), "--json", str(report), "balance", "--owner", str(owner), "--mint", str(mint)])
    document = json.loads(report.read_text(encoding="utf-8"))
    assert document["owner"] == str(owner)
    assert document["lamports"] == 2_000_000
    assert document["token_amount"] == 750


def test_airdrop_reports_new_balance(config_path, tmp_path, monkeypatch):
    owner = new_pubkey(3)
    balances = iter([0, 1_000_000_000])

    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "getBalance":
            result = {"value": next(balances)}
        elif body["method"] == "requestAirdrop":
            assert body["params"] == [str(owner), 1_000_000_000]
            result = "airdrop-sig"
        else:
            result = {"value": [{"err": None, "confirmationStatus": "confirmed"}]}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    mock_rpc(monkeypatch, handler)
    report = tmp_path / "airdrop.json"
    main(["--config", str(config_path), "--json", str(report), "airdrop", "1000000000", "--owner", str(owner)])
    assert json.loads(report.read_text(encoding="utf-8"))["lamports"] == 1_000_000_000
