"""Exception classes raised by starkops."""

from typing import List, Optional


def _label(contract) -> str:
    if isinstance(contract, int):
        return hex(contract)
    return str(contract)


class StarkOpsError(Exception):
    """Base exception for all starkops errors."""


#
# Remote
#


class RemoteError(StarkOpsError):
    """Raised when an endpoint fails to produce a usable answer."""

    def __init__(self, message: str, endpoint: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.detail = message
        self.endpoint = endpoint
        self.operation = operation
        self.attempts: List["RemoteError"] = []

    def __str__(self) -> str:
        prefix = f"[{self.endpoint}] " if self.endpoint else ""
        if self.operation:
            prefix = f"{prefix}{self.operation}: "
        return f"{prefix}{self.detail}"


class EndpointUnavailable(RemoteError, ConnectionError):
    """Raised when the endpoint cannot be reached or answers with an HTTP error."""


class EndpointTimeout(RemoteError, TimeoutError):
    """Raised when the endpoint does not answer within its timeout."""


class MalformedResponse(RemoteError, ValueError):
    """Raised when the endpoint answers with something that cannot be parsed."""


class RpcError(RemoteError):
    """Raised when the endpoint returns a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data=None, endpoint: Optional[str] = None,
                 operation: Optional[str] = None):
        self.code = code
        self.rpc_message = message
        self.data = data
        detail = f"RPC error {code}: {message}"
        if data:
            detail = f"{detail} ({data})"
        super().__init__(detail, endpoint=endpoint, operation=operation)


#
# Confirmation
#


class Unconfirmed(StarkOpsError, TimeoutError):
    """
    Raised when a submitted operation was not observed in a terminal state
    before the deadline. The remote side may still finalize it later.
    """

    def __init__(self, operation, last_status=None, last_error: Optional[Exception] = None):
        self.operation = operation
        self.last_status = last_status
        self.last_error = last_error
        status = last_status.name if last_status is not None else "no status"
        super().__init__(f"{operation.describe()} unconfirmed (last seen: {status})")


class AmbiguousSubmission(Unconfirmed):
    """
    Raised when an endpoint timed out on a submission and a later endpoint
    refused the same signed transaction with a nonce or duplicate conflict.
    The first endpoint may have accepted it; its transaction hash is unknown.
    """

    def __init__(self, operation: str, timeout: RemoteError, conflict: RpcError):
        self.operation = operation
        self.last_status = None
        self.last_error = conflict
        self.timeout = timeout
        StarkOpsError.__init__(
            self,
            f"{operation} may have been accepted by {timeout.endpoint} before it timed out "
            f"({conflict.endpoint} answered: {conflict.detail}); check the account nonce "
            f"before resubmitting",
        )


class OperationFailed(StarkOpsError):
    """Raised when a submitted operation reached a non-accepted terminal state."""

    def __init__(self, operation, status, reason: Optional[str] = None):
        self.operation = operation
        self.status = status
        self.reason = reason
        message = f"{operation.describe()} {status.name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class OperationReverted(OperationFailed):
    """The operation was executed and rejected by the contract."""


class OperationDropped(OperationFailed):
    """The operation was rejected by the sequencer and never executed."""


#
# Protocol
#


class ProtocolViolation(StarkOpsError, ValueError):
    """Raised when a requested transition is not legal in the current upgrade state."""

    def __init__(self, contract, message: str):
        self.contract = contract
        super().__init__(f"{_label(contract)}: {message}")


class UnknownClass(ProtocolViolation):
    def __init__(self, contract, class_hash: int):
        self.class_hash = class_hash
        super().__init__(contract, f"class {hex(class_hash)} is not declared on the network")


class UpgradeAlreadyPending(ProtocolViolation):
    def __init__(self, contract, pending_class_hash: int):
        self.pending_class_hash = pending_class_hash
        super().__init__(
            contract,
            f"upgrade to {hex(pending_class_hash)} is already pending; "
            f"execute or cancel it first",
        )


class NotReady(ProtocolViolation):
    def __init__(self, contract, ready_time: int, remaining: int):
        self.ready_time = ready_time
        self.remaining = remaining
        super().__init__(
            contract, f"upgrade not ready for another {remaining}s (ready at {ready_time})"
        )


class NoPendingUpgrade(ProtocolViolation):
    def __init__(self, contract):
        super().__init__(contract, "no pending upgrade")


class CannotChangeDelayWhilePending(ProtocolViolation):
    def __init__(self, contract, pending_class_hash: int):
        self.pending_class_hash = pending_class_hash
        super().__init__(
            contract,
            f"cannot change upgrade delay while {hex(pending_class_hash)} is pending",
        )


class UpgradeInfoDecodingError(StarkOpsError, ValueError):
    """Raised when the upgrade info record has an unexpected shape."""


#
# Preconditions & configuration
#


class InsufficientBalance(StarkOpsError, ValueError):
    def __init__(self, token: int, account: int, amount: int, balance: int):
        self.token = token
        self.account = account
        self.amount = amount
        self.balance = balance
        super().__init__(
            f"{hex(account)} holds {balance} of token {hex(token)}, cannot transfer {amount}"
        )


class DeploymentConfigError(StarkOpsError, ValueError):
    pass
