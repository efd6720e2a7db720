"""Instruction data encoding and account meta ordering."""

import hashlib
import struct

import pytest

from staking_client.instructions import (
    CLAIM_REWARD,
    INITIALIZE,
    STAKING,
    InstructionCoder,
    camel_case,
    instruction_discriminator,
    snake_case,
)

from conftest import new_pubkey


def stake_accounts():
    return {
        "stakingData": new_pubkey(1),
        "stakeStateAccount": new_pubkey(2),
        "escrowAccount": new_pubkey(3),
        "stakerAccount": new_pubkey(4),
        "authority": new_pubkey(5),
        "tokenProgram": new_pubkey(6),
    }


class TestNaming:

    def test_case_conversion(self):
        assert camel_case("min_stake_period") == "minStakePeriod"
        assert snake_case("initializeStakeState") == "initialize_stake_state"
        assert snake_case(CLAIM_REWARD) == CLAIM_REWARD

    def test_discriminator(self):
        assert instruction_discriminator("claimReward") == hashlib.sha256(b"global:claim_reward").digest()[:8]


class TestInstructionCoder:

    def test_initialize_arguments(self, program_id):
        data = InstructionCoder(program_id).encode_data(INITIALIZE, [800, 86400, 3600])
        assert len(data) == 8 + 4 + 8 + 8
        assert data[:8] == instruction_discriminator(INITIALIZE)
        assert struct.unpack("<IQQ", data[8:]) == (800, 86400, 3600)

    def test_stake_metas(self, program_id):
        accounts = stake_accounts()
        instruction = InstructionCoder(program_id).build(STAKING, [250], accounts)
        assert instruction.program_id == program_id
        assert [meta.pubkey for meta in instruction.accounts] == list(accounts.values())
        flags = [(meta.is_signer, meta.is_writable) for meta in instruction.accounts]
        assert flags == [
            (False, True),
            (False, True),
            (False, True),
            (False, True),
            (True, False),
            (False, False),
        ]
        assert bytes(instruction.data)[8:] == struct.pack("<Q", 250)

    def test_extra_signer(self, program_id):
        instruction = InstructionCoder(program_id).build(STAKING, [1], stake_accounts(), extra_signers=["stakingData"])
        assert instruction.accounts[0].is_signer

    def test_missing_account(self, program_id):
        accounts = stake_accounts()
        del accounts["escrowAccount"]
        with pytest.raises(ValueError, match="escrowAccount"):
            InstructionCoder(program_id).build(STAKING, [1], accounts)

    @pytest.mark.parametrize("args", [[-1], [2**64], []])
    def test_bad_arguments(self, program_id, args):
        with pytest.raises(ValueError):
            InstructionCoder(program_id).encode_data(STAKING, args)

    def test_unknown_instruction(self, program_id):
        with pytest.raises(ValueError):
            InstructionCoder(program_id).spec("burn")

    def test_idl_overrides_layout(self, program_id):
        idl = {
            "instructions": [
                {
                    "name": "setMaxApy",
                    "accounts": [
                        {"name": "stakingData", "isMut": True, "isSigner": False},
                        {"name": "authority", "isMut": False, "isSigner": True},
                        {"name": "auditor", "isMut": False, "isSigner": False},
                    ],
                    "args": [{"name": "apy_max", "type": "u64"}],
                }
            ]
        }
        coder = InstructionCoder(program_id, idl)
        spec = coder.spec("set_max_apy")
        assert [account.name for account in spec.accounts] == ["stakingData", "authority", "auditor"]
        assert spec.args == (("apyMax", "u64"),)
        assert len(coder.encode_data("setMaxApy", [900])) == 16

    def test_idl_rejects_complex_argument(self, program_id):
        idl = {"instructions": [{"name": "staking", "accounts": [], "args": [{"name": "x", "type": {"vec": "u8"}}]}]}
        with pytest.raises(ValueError):
            InstructionCoder(program_id, idl)
