import itertools
from collections import defaultdict
from typing import Dict, List

import pytest

from starkops.calldata import (
    encode_shortstring,
    felt_to_hex,
    get_selector_from_name,
    join_uint256,
    split_uint256,
)
from starkops.constants import (
    CLASS_ALREADY_DECLARED,
    CLASS_HASH_NOT_FOUND,
    CONTRACT_DEPLOYED_EVENT,
    CONTRACT_NOT_FOUND,
    TXN_HASH_NOT_FOUND,
    UDC_ADDRESS,
)
from starkops.endpoints import Endpoint, EndpointPool
from starkops.errors import EndpointTimeout, EndpointUnavailable, RpcError
from starkops.executor import ResilientExecutor, Signer
from starkops.params import Transactor

# Common constants
START_TIME = 1_700_000_000
ONE_HOUR = 60 * 60
CHAIN_ID = "SN_SEPOLIA"
DEPLOYER_ADDRESS = 0x0D3B1C4A5E6F708192A3B4C5D6E7F8091A2B3C4D5E6F708192A3B4C5D6E7F80
OTHER_ADDRESS = 0x0BEEF
CONTRACT_ERROR = 40
INVALID_NONCE = 52
INTERNAL_ERROR = -32603


class Revert(Exception):
    pass


def _felt(value: str) -> int:
    return int(value, 16)


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


#
# Contracts
#


class FakeContract:
    """Entrypoints are methods named view_<name> or external_<name>."""

    def __init__(self, class_hash: int):
        self.class_hash = class_hash

    def _entrypoint(self, selector: int, prefix: str):
        for attribute in dir(self):
            if attribute.startswith(prefix):
                if get_selector_from_name(attribute[len(prefix) :]) == selector:
                    return getattr(self, attribute)
        raise Revert(f"ENTRYPOINT_NOT_FOUND {hex(selector)}")

    def call(self, selector, calldata, starknet):
        return self._entrypoint(selector, "view_")(calldata, starknet)

    def invoke(self, selector, calldata, caller, starknet):
        return self._entrypoint(selector, "external_")(calldata, caller, starknet) or []


class TimelockContract(FakeContract):
    def __init__(self, class_hash: int, delay: int, four_fields: bool = False):
        super().__init__(class_hash)
        self.pending_class_hash = 0
        self.ready_time = 0
        self.delay = delay
        self.four_fields = four_fields

    def view_get_upgrade_info(self, calldata, starknet):
        if self.four_fields:
            now = int(starknet.clock())
            return [self.pending_class_hash, self.ready_time, now, self.delay]
        return [self.pending_class_hash, self.ready_time, self.delay]

    def external_schedule_upgrade(self, calldata, caller, starknet):
        if self.pending_class_hash:
            raise Revert("upgrade already pending")
        self.pending_class_hash = calldata[0]
        self.ready_time = int(starknet.clock()) + self.delay

    def external_execute_upgrade(self, calldata, caller, starknet):
        if not self.pending_class_hash:
            raise Revert("no pending upgrade")
        if starknet.clock() < self.ready_time:
            raise Revert("upgrade not ready")
        self.class_hash = self.pending_class_hash
        self.pending_class_hash, self.ready_time = 0, 0

    def external_cancel_upgrade(self, calldata, caller, starknet):
        if not self.pending_class_hash:
            raise Revert("no pending upgrade")
        self.pending_class_hash, self.ready_time = 0, 0

    def external_set_upgrade_delay(self, calldata, caller, starknet):
        if self.pending_class_hash:
            raise Revert("upgrade pending")
        self.delay = calldata[0]


class TokenContract(FakeContract):
    def __init__(self, balances: Dict[int, int], single_field: bool = False):
        super().__init__(class_hash=0x70C3)
        self.balances = defaultdict(int, balances)
        self.single_field = single_field
        # charged to the sender on every transfer, like a fee paid in the same token
        self.fee = 0

    def view_balanceOf(self, calldata, starknet):
        balance = self.balances[calldata[0]]
        if self.single_field:
            return [balance]
        return list(split_uint256(balance))

    def external_transfer(self, calldata, caller, starknet):
        recipient, low, high = calldata
        amount = join_uint256(low, high)
        if self.balances[caller] < amount + self.fee:
            raise Revert("ERC20: insufficient balance")
        self.balances[caller] -= amount + self.fee
        self.balances[recipient] += amount


class DeployedContract(FakeContract):
    """Accepts any write and remembers it."""

    def __init__(self, class_hash: int, salt: int, constructor_calldata: List[int]):
        super().__init__(class_hash)
        self.salt = salt
        self.constructor_calldata = constructor_calldata
        self.invocations = list()

    def invoke(self, selector, calldata, caller, starknet):
        self.invocations.append((selector, list(calldata)))
        return []


class UniversalDeployer(FakeContract):
    def __init__(self):
        super().__init__(class_hash=0x0DC)

    def external_deployContract(self, calldata, caller, starknet):
        class_hash, salt, unique, length, *constructor_calldata = calldata
        if len(constructor_calldata) != length:
            raise Revert("constructor calldata length mismatch")
        if class_hash not in starknet.classes:
            raise Revert(f"class {hex(class_hash)} is not declared")
        address = get_selector_from_name(f"{class_hash}:{salt}:{caller if unique else 0}")
        if address in starknet.contracts:
            raise Revert("contract already deployed")
        starknet.contracts[address] = DeployedContract(class_hash, salt, constructor_calldata)
        data = [address, caller, unique, class_hash, length, *constructor_calldata, salt]
        return [
            {
                "from_address": felt_to_hex(UDC_ADDRESS),
                "keys": [felt_to_hex(get_selector_from_name(CONTRACT_DEPLOYED_EVENT))],
                "data": [felt_to_hex(value) for value in data],
            }
        ]


#
# Network
#


class FakeTransaction:
    def __init__(self, tx_hash, finality_status, reason=None, events=None, polls=0):
        self.tx_hash = tx_hash
        self.finality_status = finality_status
        self.reason = reason
        self.events = events or []
        self.pending_polls = polls

    @property
    def execution_status(self) -> str:
        return "REVERTED" if self.reason else "SUCCEEDED"


class FakeStarknet:
    """In-memory Starknet node answering the JSON-RPC methods starkops uses."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.chain_id = encode_shortstring(CHAIN_ID)
        self.contracts: Dict[int, FakeContract] = {UDC_ADDRESS: UniversalDeployer()}
        self.classes: Dict[int, int] = dict()
        self.nonces = defaultdict(int)
        self.transactions: Dict[int, FakeTransaction] = dict()
        self.invocations = list()
        self.failing_selectors = set()
        # statuses reported as RECEIVED before the final one
        self.pending_polls = 0
        self.reject_next = False
        self.hide_classes = False
        self.receipt_failures = 0
        self._tx_hashes = itertools.count(0x7700)

    # setup helpers

    def declare_class(self, class_hash: int, compiled_class_hash: int = 0x1) -> None:
        self.classes[class_hash] = compiled_class_hash

    def add_timelock(self, address: int, delay: int = ONE_HOUR, four_fields: bool = False):
        contract = TimelockContract(class_hash=0x01D, delay=delay, four_fields=four_fields)
        self.contracts[address] = contract
        return contract

    def add_token(self, address: int, balances: Dict[int, int], single_field: bool = False):
        contract = TokenContract(balances=balances, single_field=single_field)
        self.contracts[address] = contract
        return contract

    def fail_entrypoint(self, name: str) -> None:
        self.failing_selectors.add(get_selector_from_name(name))

    def entrypoint_calls(self, name: str) -> List[List[int]]:
        selector = get_selector_from_name(name)
        return [calldata for _, call_selector, calldata in self.invocations if call_selector == selector]

    # JSON-RPC

    def handle(self, method: str, params: dict):
        return getattr(self, f"_{method}")(**params)

    def _starknet_chainId(self):
        return felt_to_hex(self.chain_id)

    def _starknet_getNonce(self, block_id, contract_address):
        return felt_to_hex(self.nonces[_felt(contract_address)])

    def _starknet_call(self, request, block_id):
        address = _felt(request["contract_address"])
        contract = self.contracts.get(address)
        if contract is None:
            raise RpcError(CONTRACT_NOT_FOUND, "Contract not found")
        calldata = [_felt(value) for value in request["calldata"]]
        try:
            result = contract.call(_felt(request["entry_point_selector"]), calldata, self)
        except Revert as e:
            raise RpcError(CONTRACT_ERROR, "Contract error", data=str(e))
        return [felt_to_hex(value) for value in result]

    def _starknet_getClass(self, block_id, class_hash):
        class_hash = _felt(class_hash)
        if self.hide_classes or class_hash not in self.classes:
            raise RpcError(CLASS_HASH_NOT_FOUND, "Class hash not found")
        return {
            "sierra_program": [felt_to_hex(class_hash)],
            "contract_class_version": "0.1.0",
            "entry_points_by_type": {},
            "abi": "[]",
        }

    def _new_transaction(self, finality_status="ACCEPTED_ON_L2", reason=None, events=None):
        if self.reject_next:
            self.reject_next = False
            finality_status, reason, events = "REJECTED", "rejected by sequencer", None
        tx_hash = next(self._tx_hashes)
        self.transactions[tx_hash] = FakeTransaction(
            tx_hash, finality_status, reason=reason, events=events, polls=self.pending_polls
        )
        return tx_hash

    def _check_nonce(self, transaction: dict) -> int:
        sender = _felt(transaction["sender_address"])
        if _felt(transaction["nonce"]) != self.nonces[sender]:
            raise RpcError(INVALID_NONCE, "Invalid transaction nonce")
        self.nonces[sender] += 1
        return sender

    def _starknet_addInvokeTransaction(self, invoke_transaction):
        sender = self._check_nonce(invoke_transaction)
        calldata = [_felt(value) for value in invoke_transaction["calldata"]]
        events, reason = list(), None
        try:
            count, position = calldata[0], 1
            for _ in range(count):
                to, selector, length = calldata[position : position + 3]
                arguments = calldata[position + 3 : position + 3 + length]
                position += 3 + length
                self.invocations.append((to, selector, arguments))
                if selector in self.failing_selectors:
                    raise Revert(f"entrypoint {hex(selector)} failed")
                contract = self.contracts.get(to)
                if contract is None:
                    raise Revert(f"contract {hex(to)} not found")
                events.extend(contract.invoke(selector, arguments, sender, self))
        except Revert as e:
            reason, events = str(e), list()
        tx_hash = self._new_transaction(reason=reason, events=events)
        return {"transaction_hash": felt_to_hex(tx_hash)}

    def _starknet_addDeclareTransaction(self, declare_transaction):
        contract_class = declare_transaction["contract_class"]
        class_hash = _felt(contract_class["sierra_program"][0])
        if class_hash in self.classes:
            raise RpcError(CLASS_ALREADY_DECLARED, "Class already declared")
        self._check_nonce(declare_transaction)
        self.declare_class(class_hash, _felt(declare_transaction["compiled_class_hash"]))
        tx_hash = self._new_transaction()
        return {"transaction_hash": felt_to_hex(tx_hash), "class_hash": felt_to_hex(class_hash)}

    def _starknet_getTransactionStatus(self, transaction_hash):
        transaction = self.transactions.get(_felt(transaction_hash))
        if transaction is None:
            raise RpcError(TXN_HASH_NOT_FOUND, "Transaction hash not found")
        if transaction.pending_polls > 0:
            transaction.pending_polls -= 1
            return {"finality_status": "RECEIVED"}
        status = {"finality_status": transaction.finality_status}
        if transaction.finality_status != "REJECTED":
            status["execution_status"] = transaction.execution_status
        if transaction.reason:
            status["failure_reason"] = transaction.reason
        return status

    def _starknet_getTransactionReceipt(self, transaction_hash):
        if self.receipt_failures > 0:
            self.receipt_failures -= 1
            raise RpcError(INTERNAL_ERROR, "Internal error")
        transaction = self.transactions.get(_felt(transaction_hash))
        if transaction is None:
            raise RpcError(TXN_HASH_NOT_FOUND, "Transaction hash not found")
        return {
            "transaction_hash": transaction_hash,
            "execution_status": transaction.execution_status,
            "finality_status": transaction.finality_status,
            "events": transaction.events,
        }


class FakeEndpoint(Endpoint):
    """Serves a FakeStarknet, or fails in the configured way."""

    def __init__(self, name: str, starknet: FakeStarknet, failure: str = None):
        super().__init__(name=name, timeout=30, declare_timeout=300)
        self.starknet = starknet
        self.failure = failure
        self.requests = list()

    def request(self, method, params, timeout):
        self.requests.append((method, timeout))
        if self.failure == "timeout":
            raise EndpointTimeout(f"no answer within {timeout}s", endpoint=self.name, operation=method)
        if self.failure == "unavailable":
            raise EndpointUnavailable("connection refused", endpoint=self.name, operation=method)
        if self.failure == "malformed":
            return "<html>502 Bad Gateway</html>"
        try:
            result = self.starknet.handle(method, params)
        except RpcError as e:
            e.endpoint = self.name
            raise
        if self.failure == "lost_reply":
            # the node processed the request but the answer never arrived
            raise EndpointTimeout(f"no answer within {timeout}s", endpoint=self.name, operation=method)
        return result

    def methods(self) -> List[str]:
        return [method for method, _ in self.requests]


class FakeSigner(Signer):
    def __init__(self, address: int = DEPLOYER_ADDRESS):
        self._address = address
        self.signed = list()

    @property
    def address(self) -> int:
        return self._address

    def sign_invoke(self, calldata, nonce, chain_id):
        transaction = {
            "type": "INVOKE",
            "version": "0x3",
            "sender_address": felt_to_hex(self._address),
            "calldata": [felt_to_hex(value) for value in calldata],
            "nonce": felt_to_hex(nonce),
            "signature": [felt_to_hex(chain_id), felt_to_hex(nonce)],
        }
        self.signed.append(transaction)
        return transaction

    def sign_declare(self, contract_class, compiled_class_hash, nonce, chain_id):
        transaction = {
            "type": "DECLARE",
            "version": "0x3",
            "sender_address": felt_to_hex(self._address),
            "contract_class": contract_class,
            "compiled_class_hash": felt_to_hex(compiled_class_hash),
            "nonce": felt_to_hex(nonce),
            "signature": [felt_to_hex(chain_id), felt_to_hex(nonce)],
        }
        self.signed.append(transaction)
        return transaction


# Fixtures
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def starknet(clock):
    return FakeStarknet(clock)


@pytest.fixture
def endpoints(starknet):
    return [
        FakeEndpoint("primary", starknet),
        FakeEndpoint("secondary", starknet),
        FakeEndpoint("tertiary", starknet),
    ]


@pytest.fixture
def executor(endpoints, clock):
    return ResilientExecutor(
        pool=EndpointPool(endpoints),
        chain_id=encode_shortstring(CHAIN_ID),
        poll_interval=5,
        confirmation_timeout=60,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def transactor(executor, signer):
    return Transactor(executor=executor, signer=signer, autosign=True)
