import math
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Dict, NamedTuple, Optional, Sequence

from starkops.constants import (
    CANCEL_UPGRADE,
    EXECUTE_UPGRADE,
    GET_UPGRADE_INFO,
    SCHEDULE_UPGRADE,
    SET_UPGRADE_DELAY,
    UINT32_MAX,
    UINT64_MAX,
    ZERO_CLASS_HASH,
)
from starkops.errors import (
    CannotChangeDelayWhilePending,
    NoPendingUpgrade,
    NotReady,
    StarkOpsError,
    UnknownClass,
    UpgradeAlreadyPending,
    UpgradeInfoDecodingError,
)
from starkops.executor import ResilientExecutor
from starkops.params import Transactor


class UpgradeState(Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    READY = "ready"


class UpgradeInfo(NamedTuple):
    """
    Upgrade timelock record of a single contract.

    Older contracts return [pending_class_hash, ready_time, delay_seconds];
    newer ones also report the block timestamp they observed as the third
    field, before the delay.
    """

    pending_class_hash: int
    ready_time: int
    delay_seconds: int
    observed_remote_time: Optional[int] = None

    @classmethod
    def decode(cls, fields: Sequence[int]) -> "UpgradeInfo":
        if len(fields) == 3:
            pending_class_hash, ready_time, delay_seconds = fields
            observed_remote_time = None
        elif len(fields) == 4:
            pending_class_hash, ready_time, observed_remote_time, delay_seconds = fields
        else:
            raise UpgradeInfoDecodingError(
                f"expected 3 or 4 upgrade info fields, got {len(fields)}"
            )

        if not 0 <= ready_time <= UINT64_MAX:
            raise UpgradeInfoDecodingError(f"ready time {ready_time} does not fit in u64")
        if observed_remote_time is not None and not 0 <= observed_remote_time <= UINT64_MAX:
            raise UpgradeInfoDecodingError(
                f"observed time {observed_remote_time} does not fit in u64"
            )
        if not 0 <= delay_seconds <= UINT32_MAX:
            raise UpgradeInfoDecodingError(f"delay {delay_seconds} does not fit in u32")

        return cls(
            pending_class_hash=pending_class_hash,
            ready_time=ready_time,
            delay_seconds=delay_seconds,
            observed_remote_time=observed_remote_time,
        )

    @property
    def has_pending(self) -> bool:
        return self.pending_class_hash != ZERO_CLASS_HASH

    def state(self, now: float) -> UpgradeState:
        if not self.has_pending:
            return UpgradeState.IDLE
        if now >= self.ready_time:
            return UpgradeState.READY
        return UpgradeState.SCHEDULED

    def remaining(self, now: float) -> int:
        """Seconds until the pending upgrade can be executed."""
        if not self.has_pending:
            return 0
        return max(0, math.ceil(self.ready_time - now))


class UpgradeCoordinator:
    """
    Drives the schedule -> execute upgrade timelock of deployed contracts.
    Every transition is checked against the current on-chain record before
    anything is submitted.
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        transactor: Optional[Transactor] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.executor = executor
        self.transactor = transactor
        self.clock = clock or executor.clock

    def _transact(self, contract: int, entrypoint: str, calldata=(), name: Optional[str] = None):
        if self.transactor is None:
            raise ValueError("A signing transactor is required to submit upgrade transitions.")
        return self.transactor.transact(contract, entrypoint, calldata, name=name)

    def get_status(self, contract: int, name: Optional[str] = None) -> UpgradeInfo:
        fields = self.executor.submit_read(contract, GET_UPGRADE_INFO)
        try:
            return UpgradeInfo.decode(fields)
        except UpgradeInfoDecodingError as e:
            raise UpgradeInfoDecodingError(f"{name or hex(contract)}: {e}") from e

    def schedule(self, contract: int, new_class_hash: int, name: Optional[str] = None) -> UpgradeInfo:
        label = name or contract
        if not self.executor.class_exists(new_class_hash):
            raise UnknownClass(label, new_class_hash)

        info = self.get_status(contract, name=name)
        if info.has_pending:
            raise UpgradeAlreadyPending(label, info.pending_class_hash)

        self._transact(contract, SCHEDULE_UPGRADE, [new_class_hash], name=name)
        return UpgradeInfo(
            pending_class_hash=new_class_hash,
            ready_time=int(self.clock()) + info.delay_seconds,
            delay_seconds=info.delay_seconds,
        )

    def execute(self, contract: int, name: Optional[str] = None) -> int:
        """Executes a ready upgrade and returns the class hash that became active."""
        label = name or contract
        info = self.get_status(contract, name=name)
        if not info.has_pending:
            raise NoPendingUpgrade(label)

        now = self.clock()
        if info.state(now) != UpgradeState.READY:
            raise NotReady(label, ready_time=info.ready_time, remaining=info.remaining(now))

        self._transact(contract, EXECUTE_UPGRADE, name=name)
        return info.pending_class_hash

    def cancel(self, contract: int, name: Optional[str] = None) -> int:
        """Cancels the pending upgrade and returns its class hash."""
        info = self.get_status(contract, name=name)
        if not info.has_pending:
            raise NoPendingUpgrade(name or contract)

        self._transact(contract, CANCEL_UPGRADE, name=name)
        return info.pending_class_hash

    def set_delay(self, contract: int, new_delay: int, name: Optional[str] = None) -> bool:
        """Returns False when the delay is already set to the requested value."""
        if isinstance(new_delay, bool) or not isinstance(new_delay, int):
            raise TypeError(f"Upgrade delay must be an int, got {type(new_delay).__name__}.")
        if not 0 <= new_delay <= UINT32_MAX:
            raise ValueError(f"Upgrade delay {new_delay} does not fit in u32.")

        label = name or contract
        info = self.get_status(contract, name=name)
        if info.has_pending:
            raise CannotChangeDelayWhilePending(label, info.pending_class_hash)
        if info.delay_seconds == new_delay:
            print(f"(i) {name or hex(contract)} upgrade delay is already {new_delay}s")
            return False

        self._transact(contract, SET_UPGRADE_DELAY, [new_delay], name=name)
        return True

    def run_batch(
        self, contracts: Dict[str, int], action: Callable[[int, str], Any]
    ) -> Dict[str, Any]:
        """
        Applies `action(address, name)` to each contract in order. A failure is
        recorded as the contract's result and does not stop the batch.
        """
        results = OrderedDict()
        for name, address in contracts.items():
            try:
                results[name] = action(address, name)
            except StarkOpsError as e:
                print(f"(!) {name}: {e}")
                results[name] = e
        return results
