import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Collection, Dict, List, NamedTuple, Optional, Sequence, Tuple

from eth_utils import is_hex, to_int

from starkops.calldata import Call, encode_multicall, felt_to_hex, get_selector_from_name
from starkops.constants import (
    CLASS_HASH_NOT_FOUND,
    DEFAULT_ACCEPTED_STATES,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    SUBMISSION_CONFLICTS,
    TXN_HASH_NOT_FOUND,
    TransactionStatus,
)
from starkops.endpoints import Endpoint, EndpointPool
from starkops.errors import (
    AmbiguousSubmission,
    EndpointTimeout,
    EndpointUnavailable,
    MalformedResponse,
    OperationDropped,
    OperationReverted,
    RemoteError,
    RpcError,
    Unconfirmed,
)


class Signer(ABC):
    """
    Produces signed transactions for a single account.
    Key storage and signature schemes live outside of starkops.
    """

    @property
    @abstractmethod
    def address(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def sign_invoke(self, calldata: List[int], nonce: int, chain_id: int) -> Dict[str, Any]:
        """Returns a signed INVOKE transaction for starknet_addInvokeTransaction."""
        raise NotImplementedError

    @abstractmethod
    def sign_declare(
        self, contract_class: Dict[str, Any], compiled_class_hash: int, nonce: int, chain_id: int
    ) -> Dict[str, Any]:
        """Returns a signed DECLARE transaction for starknet_addDeclareTransaction."""
        raise NotImplementedError


class OperationState(Enum):
    SUBMITTED = "submitted"
    AWAITING_CONFIRMATION = "awaiting confirmation"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    DROPPED = "dropped"
    UNCONFIRMED = "unconfirmed"


@dataclass
class PendingOperation:
    """A write accepted by an endpoint, tracked until it reaches a terminal state."""

    target: int
    entrypoint: str
    calldata: List[int]
    submitted_at: float
    tx_hash: int
    endpoint: str
    class_hash: Optional[int] = None
    state: OperationState = OperationState.SUBMITTED

    def describe(self) -> str:
        return f"{self.entrypoint} on {hex(self.target)} (tx {hex(self.tx_hash)})"


class StatusReport(NamedTuple):
    status: TransactionStatus
    failure_reason: Optional[str] = None


#
# Result parsers - any exception they raise marks the response as malformed
#


def _parse_felt(value: Any) -> int:
    if not isinstance(value, str) or not is_hex(value):
        raise ValueError(f"{value!r} is not a hex felt")
    return to_int(hexstr=value)


def _parse_felts(result: Any) -> List[int]:
    if not isinstance(result, list):
        raise ValueError(f"expected a list of felts, got {type(result).__name__}")
    return [_parse_felt(value) for value in result]


def _parse_dict(result: Any) -> Dict[str, Any]:
    if not isinstance(result, dict):
        raise ValueError(f"expected an object, got {type(result).__name__}")
    return result


# finality states introduced by newer RPC versions before a block is closed
_PRE_ACCEPTANCE_STATES = {"CANDIDATE", "PRE_CONFIRMED"}


def _parse_status(result: Any) -> StatusReport:
    result = _parse_dict(result)
    if result.get("execution_status") == "REVERTED":
        return StatusReport(TransactionStatus.REVERTED, result.get("failure_reason"))
    finality_status = result["finality_status"]
    if finality_status in _PRE_ACCEPTANCE_STATES:
        return StatusReport(TransactionStatus.PENDING)
    return StatusReport(TransactionStatus(finality_status))


class ResilientExecutor:
    """
    Submits reads and writes against an endpoint pool, falling over to the
    next endpoint on transport failures, and polls writes to confirmation.
    """

    def __init__(
        self,
        pool: EndpointPool,
        chain_id: int,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        accepted_states: Collection[TransactionStatus] = DEFAULT_ACCEPTED_STATES,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pool = pool
        self.chain_id = chain_id
        self.poll_interval = poll_interval
        self.confirmation_timeout = confirmation_timeout
        self.accepted_states = frozenset(accepted_states)
        self.clock = clock
        self.sleep = sleep

    def _attempt(
        self,
        method: str,
        params: Dict[str, Any],
        operation: str,
        parse: Optional[Callable[[Any], Any]] = None,
        large_payload: bool = False,
    ) -> Tuple[Any, Endpoint]:
        """Tries each endpoint once, in order, until one produces a usable result."""
        failures: List[RemoteError] = list()
        for endpoint in self.pool:
            try:
                result = endpoint.request(
                    method, params, timeout=endpoint.timeout_for(large_payload)
                )
                if parse is not None:
                    try:
                        result = parse(result)
                    except (KeyError, TypeError, ValueError) as e:
                        raise MalformedResponse(
                            f"unusable result ({e})", endpoint=endpoint.name
                        ) from e
            except (EndpointUnavailable, EndpointTimeout, MalformedResponse) as e:
                e.operation = operation
                print(f"(!) {e}")
                failures.append(e)
                continue
            except RpcError as e:
                # the endpoint answered; another endpoint would answer the same
                e.operation = operation
                e.attempts = failures + [e]
                raise
            return result, endpoint

        last_error = failures[-1]
        last_error.attempts = failures
        raise last_error

    #
    # Reads
    #

    def submit_read(self, contract: int, entrypoint: str, calldata: Sequence[int] = ()) -> List[int]:
        params = {
            "request": {
                "contract_address": felt_to_hex(contract),
                "entry_point_selector": felt_to_hex(get_selector_from_name(entrypoint)),
                "calldata": [felt_to_hex(value) for value in calldata],
            },
            "block_id": "latest",
        }
        result, _ = self._attempt(
            "starknet_call",
            params,
            operation=f"call {entrypoint} on {hex(contract)}",
            parse=_parse_felts,
        )
        return result

    def get_nonce(self, address: int) -> int:
        params = {"block_id": "latest", "contract_address": felt_to_hex(address)}
        result, _ = self._attempt(
            "starknet_getNonce", params, operation=f"nonce of {hex(address)}", parse=_parse_felt
        )
        return result

    def get_chain_id(self) -> int:
        result, _ = self._attempt("starknet_chainId", {}, operation="chain id", parse=_parse_felt)
        return result

    def class_exists(self, class_hash: int) -> bool:
        params = {"block_id": "latest", "class_hash": felt_to_hex(class_hash)}
        try:
            self._attempt(
                "starknet_getClass",
                params,
                operation=f"class {hex(class_hash)}",
                parse=_parse_dict,
                large_payload=True,
            )
        except RpcError as e:
            if e.code == CLASS_HASH_NOT_FOUND:
                return False
            raise
        return True

    def get_transaction_status(self, tx_hash: int) -> StatusReport:
        params = {"transaction_hash": felt_to_hex(tx_hash)}
        try:
            result, _ = self._attempt(
                "starknet_getTransactionStatus",
                params,
                operation=f"status of {hex(tx_hash)}",
                parse=_parse_status,
            )
        except RpcError as e:
            if e.code == TXN_HASH_NOT_FOUND:
                return StatusReport(TransactionStatus.UNKNOWN)
            raise
        return result

    def get_receipt(self, tx_hash: int) -> Dict[str, Any]:
        params = {"transaction_hash": felt_to_hex(tx_hash)}
        result, _ = self._attempt(
            "starknet_getTransactionReceipt",
            params,
            operation=f"receipt of {hex(tx_hash)}",
            parse=_parse_dict,
        )
        return result

    #
    # Writes
    #

    def _submit(
        self, method: str, params: Dict[str, Any], operation: str, **kwargs
    ) -> Tuple[Any, Endpoint]:
        """
        Like _attempt, but a nonce or duplicate conflict that follows a timed out
        submission is ambiguous rather than definitive.
        """
        try:
            return self._attempt(method, params, operation=operation, **kwargs)
        except RpcError as e:
            timeouts = [attempt for attempt in e.attempts if isinstance(attempt, EndpointTimeout)]
            if not timeouts or e.code not in SUBMISSION_CONFLICTS:
                raise
            error = AmbiguousSubmission(operation, timeout=timeouts[0], conflict=e)
            print(f"(!) {error}")
            raise error from e

    def submit_write(
        self, contract: int, entrypoint: str, calldata: Sequence[int], signer: Signer
    ) -> PendingOperation:
        """
        Signs the call once and hands the same transaction to each endpoint in
        turn until one accepts it. Nothing is resubmitted after acceptance.
        """
        calldata = list(calldata)
        nonce = self.get_nonce(signer.address)
        transaction = signer.sign_invoke(
            encode_multicall([Call(contract, entrypoint, calldata)]),
            nonce=nonce,
            chain_id=self.chain_id,
        )
        tx_hash, endpoint = self._submit(
            "starknet_addInvokeTransaction",
            {"invoke_transaction": transaction},
            operation=f"{entrypoint} on {hex(contract)}",
            parse=lambda result: _parse_felt(result["transaction_hash"]),
        )
        operation = PendingOperation(
            target=contract,
            entrypoint=entrypoint,
            calldata=calldata,
            submitted_at=self.clock(),
            tx_hash=tx_hash,
            endpoint=endpoint.name,
        )
        print(f"(i) Submitted {operation.describe()} via {endpoint.name}")
        return operation

    def submit_declare(
        self, contract_class: Dict[str, Any], compiled_class_hash: int, signer: Signer
    ) -> PendingOperation:
        nonce = self.get_nonce(signer.address)
        transaction = signer.sign_declare(
            contract_class, compiled_class_hash, nonce=nonce, chain_id=self.chain_id
        )

        def parse(result):
            return _parse_felt(result["transaction_hash"]), _parse_felt(result["class_hash"])

        (tx_hash, class_hash), endpoint = self._submit(
            "starknet_addDeclareTransaction",
            {"declare_transaction": transaction},
            operation=f"declare from {hex(signer.address)}",
            parse=parse,
            large_payload=True,
        )
        operation = PendingOperation(
            target=signer.address,
            entrypoint="declare",
            calldata=[],
            submitted_at=self.clock(),
            tx_hash=tx_hash,
            endpoint=endpoint.name,
            class_hash=class_hash,
        )
        print(f"(i) Submitted declaration of {hex(class_hash)} via {endpoint.name}")
        return operation

    def await_confirmation(
        self,
        operation: PendingOperation,
        poll_interval: Optional[float] = None,
        accepted_states: Optional[Collection[TransactionStatus]] = None,
        timeout: Optional[float] = None,
    ) -> TransactionStatus:
        """
        Polls the operation's status until it is in one of the accepted states.

        Raises OperationReverted or OperationDropped for a terminal rejection,
        and Unconfirmed once the deadline passes without a terminal status.
        """
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        accepted_states = frozenset(accepted_states or self.accepted_states)
        timeout = self.confirmation_timeout if timeout is None else timeout
        deadline = self.clock() + timeout

        operation.state = OperationState.AWAITING_CONFIRMATION
        last_status, last_error = None, None
        while True:
            try:
                report = self.get_transaction_status(operation.tx_hash)
            except RemoteError as e:
                # unreachable is not the same as pending; remember it for the report
                last_error = e
            else:
                last_status = report.status
                if report.status in accepted_states:
                    operation.state = OperationState.CONFIRMED
                    print(f"(i) Confirmed {operation.describe()}: {report.status.name}")
                    return report.status
                if report.status == TransactionStatus.REVERTED:
                    operation.state = OperationState.REVERTED
                    raise OperationReverted(operation, report.status, report.failure_reason)
                if report.status == TransactionStatus.REJECTED:
                    operation.state = OperationState.DROPPED
                    raise OperationDropped(operation, report.status, report.failure_reason)

            remaining = deadline - self.clock()
            if remaining <= 0:
                operation.state = OperationState.UNCONFIRMED
                raise Unconfirmed(operation, last_status=last_status, last_error=last_error)
            self.sleep(min(poll_interval, remaining))
