"""
Conversion of python values into the flat felt lists a Starknet endpoint expects.

Encoding is deterministic and order-preserving: struct-like mappings are
flattened in insertion order, sequences are length-prefixed and u256 values are
sent as two 128-bit limbs (low first).
"""

from typing import Any, Iterable, List, NamedTuple, Sequence, Tuple

from eth_utils import is_hex, keccak, to_hex, to_int

from starkops.constants import FIELD_PRIME, LIMB_BITS, MASK_250, UINT128_MAX, UINT256_MAX


def get_selector_from_name(name: str) -> int:
    """Returns the entrypoint selector (starknet_keccak) of a function or event name."""
    return int.from_bytes(keccak(text=name), "big") & MASK_250


def encode_shortstring(text: str) -> int:
    """Encodes an ASCII string of at most 31 characters into a single felt."""
    if len(text) > 31:
        raise ValueError(f"Short string '{text}' is longer than 31 characters.")
    try:
        encoded = text.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"Short string '{text}' is not ASCII.")
    return int.from_bytes(encoded, "big")


def decode_shortstring(value: int) -> str:
    length = (value.bit_length() + 7) // 8
    return value.to_bytes(length, "big").decode("ascii")


def to_felt(value: Any) -> int:
    """Converts an int, bool, decimal string or 0x-prefixed hex string into a felt."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        felt = value
    elif isinstance(value, str):
        if value.startswith(("0x", "0X")) and is_hex(value):
            felt = to_int(hexstr=value)
        elif value.isdigit():
            felt = int(value)
        else:
            raise ValueError(f"'{value}' is neither a hex nor a decimal felt.")
    else:
        raise TypeError(f"Cannot convert {type(value).__name__} '{value}' to a felt.")

    if not 0 <= felt < FIELD_PRIME:
        raise ValueError(f"{value} is outside of the felt range.")
    return felt


def felt_to_hex(value: int) -> str:
    return to_hex(value)


#
# u256
#


def split_uint256(amount: int) -> Tuple[int, int]:
    """Splits a u256 into (low, high) 128-bit limbs."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"u256 amount must be an int, got {type(amount).__name__}.")
    if not 0 <= amount <= UINT256_MAX:
        raise ValueError(f"{amount} does not fit in 256 bits.")
    return amount & UINT128_MAX, amount >> LIMB_BITS


def join_uint256(low: int, high: int) -> int:
    """Recombines (low, high) 128-bit limbs into a u256."""
    for limb in (low, high):
        if not 0 <= limb <= UINT128_MAX:
            raise ValueError(f"Limb {limb} does not fit in 128 bits.")
    return low + (high << LIMB_BITS)


class Uint256(NamedTuple):
    low: int
    high: int

    @classmethod
    def from_int(cls, amount: int) -> "Uint256":
        low, high = split_uint256(amount)
        return cls(low=low, high=high)

    @property
    def value(self) -> int:
        return join_uint256(self.low, self.high)


#
# Calldata
#


def _compile_value(value: Any) -> List[int]:
    # Uint256 is itself a tuple; check it first
    if isinstance(value, Uint256):
        return [value.low, value.high]
    if isinstance(value, dict):
        return compile_calldata(value)
    if isinstance(value, (list, tuple)):
        items = list()
        for item in value:
            items.extend(_compile_value(item))
        return [len(value), *items]
    return [to_felt(value)]


def compile_calldata(arguments: Any) -> List[int]:
    """
    Flattens positional (sequence) or named (mapping) arguments into calldata.
    The top level is not length-prefixed; nested sequences are.
    """
    values: Iterable[Any] = arguments.values() if isinstance(arguments, dict) else arguments
    calldata = list()
    for value in values:
        calldata.extend(_compile_value(value))
    return calldata


class Call(NamedTuple):
    to: int
    entrypoint: str
    calldata: Sequence[int]


def encode_multicall(calls: Sequence[Call]) -> List[int]:
    """Encodes calls into the calldata of a Cairo 1 account's __execute__."""
    encoded = [len(calls)]
    for call in calls:
        encoded.extend(
            [call.to, get_selector_from_name(call.entrypoint), len(call.calldata), *call.calldata]
        )
    return encoded
