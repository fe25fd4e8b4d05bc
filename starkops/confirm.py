from typing import Any, Mapping

from starkops.calldata import Uint256


def _ask(question: str, abort_message: str = "Aborting!") -> None:
    answer = input(f"{question} Y/N? ")
    if answer.lower().strip() == "n":
        print(abort_message)
        exit(-1)


def _continue() -> None:
    """Asks the user to continue."""
    _ask("Continue")


def _is_zero(value: Any) -> bool:
    if isinstance(value, Uint256):
        return value.value == 0
    if isinstance(value, dict):
        return any(_is_zero(v) for v in value.values())
    if isinstance(value, list):
        return any(_is_zero(v) for v in value)
    if isinstance(value, str):
        return value in ("0", "0x0")
    return not isinstance(value, bool) and value == 0


def _format_value(value: Any) -> str:
    if isinstance(value, Uint256):
        return f"u256({value.value})"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{k}: {_format_value(v)}" for k, v in value.items()) + "}"
    if isinstance(value, list):
        return "[" + ", ".join(_format_value(v) for v in value) + "]"
    if isinstance(value, int) and not isinstance(value, bool):
        return hex(value)
    return str(value)


def _confirm_resolution(resolved_params: Mapping[str, Any], contract_name: str) -> None:
    """Asks the user to confirm the resolved constructor parameters for a single step."""
    if len(resolved_params) == 0:
        print(f"\n(i) No constructor parameters for {contract_name}")
    else:
        print(f"\nConstructor parameters for {contract_name}")
        for name, resolved_value in resolved_params.items():
            print(f"\t{name}={_format_value(resolved_value)}")

    _ask(f"Deploy {contract_name}", abort_message="Aborting deployment!")
    if any(_is_zero(value) for value in resolved_params.values()):
        _ask(
            "Zero value detected for deployment parameter; Continue?",
            abort_message="Aborting deployment!",
        )
