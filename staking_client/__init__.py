"""Client and test harness for the on-chain staking program."""

from .accounts import Clock, IdlAccountCoder, StakerEntry, StakingPool, StakingState
from .addresses import PoolAddresses, PoolAddressingMode, SeedScheme, derive, resolve_pool_addresses
from .errors import (
    AccountDecodeError,
    ConfigurationError,
    DerivationExhausted,
    RPCError,
    StakingClientError,
    StakingError,
    TxResult,
    format_error,
)
from .program import StakingContext, StakingProgram
from .reward import calculate_reward, get_gained_reward, project_for_staker, project_reward_amount

__version__ = "0.1.0"
