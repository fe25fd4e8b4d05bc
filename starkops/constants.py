from enum import Enum
from pathlib import Path

import starkops

#
# Filesystem
#

PACKAGE_DIR = Path(starkops.__file__).parent
NETWORKS_DIR = PACKAGE_DIR / "network_configs"
PLANS_DIR = PACKAGE_DIR / "plans"
ARTIFACTS_DIR = PACKAGE_DIR / "artifacts"

#
# Networks
#

DEVNET = "devnet"
SEPOLIA = "sepolia"
MAINNET = "mainnet"

SUPPORTED_NETWORKS = [DEVNET, SEPOLIA, MAINNET]
LOCAL_NETWORKS = [DEVNET]

#
# Field
#

FIELD_PRIME = 2**251 + 17 * 2**192 + 1
MASK_250 = 2**250 - 1
LIMB_BITS = 128
UINT128_MAX = 2**128 - 1
UINT256_MAX = 2**256 - 1
UINT64_MAX = 2**64 - 1
UINT32_MAX = 2**32 - 1

ZERO_CLASS_HASH = 0

#
# Timeouts (seconds)
#

DEFAULT_REQUEST_TIMEOUT = 30
# class declarations can carry several MB of sierra
DEFAULT_DECLARE_TIMEOUT = 300
DEFAULT_POLL_INTERVAL = 5
DECLARE_POLL_INTERVAL = 10
DEFAULT_CONFIRMATION_TIMEOUT = 600

#
# Contracts
#

# Universal Deployer Contract - same address on mainnet, sepolia and devnet
UDC_ADDRESS = 0x041A78E741E5AF2FEC34B695679BC6891742439F7AFB8484ECD7766661AD02BF
UDC_DEPLOY_ENTRYPOINT = "deployContract"
CONTRACT_DEPLOYED_EVENT = "ContractDeployed"

STRK_TOKEN_ADDRESS = 0x04718F5A0FC34CC1AF16A1CDEE98FFB20C31F5CD61D6AB07201858F4287C938D

GET_UPGRADE_INFO = "get_upgrade_info"
SCHEDULE_UPGRADE = "schedule_upgrade"
EXECUTE_UPGRADE = "execute_upgrade"
CANCEL_UPGRADE = "cancel_upgrade"
SET_UPGRADE_DELAY = "set_upgrade_delay"

BALANCE_OF = "balanceOf"
TRANSFER = "transfer"

#
# JSON-RPC error codes
#

CONTRACT_NOT_FOUND = 20
CLASS_HASH_NOT_FOUND = 28
TXN_HASH_NOT_FOUND = 29
CLASS_ALREADY_DECLARED = 51
INVALID_TRANSACTION_NONCE = 52
DUPLICATE_TX = 59

# answers to a resubmission that the first endpoint may already have accepted
SUBMISSION_CONFLICTS = (INVALID_TRANSACTION_NONCE, DUPLICATE_TX)

#
# Transaction statuses as reported by starknet_getTransactionStatus
#


class TransactionStatus(Enum):
    PENDING = "RECEIVED"
    ACCEPTED_ON_L2 = "ACCEPTED_ON_L2"
    ACCEPTED_ON_L1 = "ACCEPTED_ON_L1"
    REVERTED = "REVERTED"
    REJECTED = "REJECTED"
    UNKNOWN = "UNKNOWN"


DEFAULT_ACCEPTED_STATES = (TransactionStatus.ACCEPTED_ON_L2, TransactionStatus.ACCEPTED_ON_L1)
