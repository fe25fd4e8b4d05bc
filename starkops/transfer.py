from typing import NamedTuple, Tuple

from starkops.calldata import join_uint256, split_uint256
from starkops.constants import BALANCE_OF, TRANSFER
from starkops.errors import InsufficientBalance, MalformedResponse
from starkops.executor import PendingOperation
from starkops.params import Transactor


class TransferResult(NamedTuple):
    operation: PendingOperation
    amount: int
    sender_before: int
    sender_after: int
    recipient_before: int
    recipient_after: int
    anomalies: Tuple[str, ...] = ()

    @property
    def verified(self) -> bool:
        return not self.anomalies


class BalanceGuardedTransfer:
    """ERC20 transfer that checks the sender balance first and verifies both balances after."""

    def __init__(self, transactor: Transactor):
        self.transactor = transactor
        self.executor = transactor.executor

    def balance_of(self, token: int, account: int) -> int:
        fields = self.executor.submit_read(token, BALANCE_OF, [account])
        if len(fields) == 2:
            return join_uint256(*fields)
        if len(fields) == 1:
            return fields[0]
        raise MalformedResponse(
            f"expected a u256 balance, got {len(fields)} fields",
            operation=f"{BALANCE_OF} on {hex(token)}",
        )

    def transfer(self, token: int, sender: int, recipient: int, amount: int) -> TransferResult:
        low, high = split_uint256(amount)
        if sender != self.transactor.address:
            raise ValueError(
                f"Sender {hex(sender)} is not the signing account {hex(self.transactor.address)}."
            )

        sender_before = self.balance_of(token, sender)
        if amount > sender_before:
            raise InsufficientBalance(token, sender, amount, sender_before)
        recipient_before = self.balance_of(token, recipient)

        operation = self.transactor.transact(token, TRANSFER, [recipient, low, high], name="token")

        sender_after = self.balance_of(token, sender)
        recipient_after = self.balance_of(token, recipient)

        if sender == recipient:
            expected_sender, expected_recipient = sender_before, recipient_before
        else:
            expected_sender = sender_before - amount
            expected_recipient = recipient_before + amount

        anomalies = list()
        if sender_after != expected_sender:
            anomalies.append(
                f"sender balance is {sender_after}, expected {expected_sender}"
            )
        if recipient_after != expected_recipient:
            anomalies.append(
                f"recipient balance is {recipient_after}, expected {expected_recipient}"
            )
        for anomaly in anomalies:
            print(f"(!) Transfer {hex(operation.tx_hash)}: {anomaly}")

        return TransferResult(
            operation=operation,
            amount=amount,
            sender_before=sender_before,
            sender_after=sender_after,
            recipient_before=recipient_before,
            recipient_after=recipient_after,
            anomalies=tuple(anomalies),
        )
