import importlib
import json
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

import yaml

from starkops.calldata import to_felt
from starkops.constants import ARTIFACTS_DIR, NETWORKS_DIR, PLANS_DIR

_ENV_VARIABLE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def expand_env(value: str) -> str:
    """Substitutes ${VAR} references; an unset variable is an error."""

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        try:
            return os.environ[name]
        except KeyError:
            raise ValueError(f"Environment variable {name} is not set.")

    return _ENV_VARIABLE.sub(substitute, value)


def load_object(reference: str) -> Any:
    """Imports an object from a 'package.module:attribute' reference."""
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"'{reference}' is not a 'module:attribute' reference.")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attribute)
    except AttributeError:
        raise ValueError(f"Module '{module_name}' has no attribute '{attribute}'.")


def get_artifact_filepath(config: Dict) -> Path:
    """Returns the filepath of the deployment record."""
    artifact_config = config.get("artifacts", {})
    artifact_dir = Path(artifact_config.get("dir", ARTIFACTS_DIR))
    filename = artifact_config.get("filename")
    if not filename:
        raise ValueError("artifact filename is not set in plan file.")
    return artifact_dir / filename


def validate_config(config: Dict, chain_id: Optional[str] = None) -> Path:
    """
    Checks the plan has the required sections and targets the connected chain.
    Returns the deployment record filepath.
    """
    print("Validating plan YAML...")

    deployment = config.get("deployment")
    if not deployment:
        raise ValueError("deployment is not set in plan file.")

    config_chain_id = deployment.get("chain_id")
    if not config_chain_id:
        raise ValueError("chain_id is not set in plan file.")

    contracts = config.get("contracts")
    if not contracts:
        raise ValueError("Plan file missing 'contracts' field.")

    if chain_id is not None and config_chain_id != chain_id:
        raise ValueError(
            f"chain_id in plan file ({config_chain_id}) does not match "
            f"chain_id of current network ({chain_id})."
        )

    return get_artifact_filepath(config=config)


def network_filepath(name: str) -> Path:
    p = NETWORKS_DIR / f"{name}.yml"
    if not p.exists():
        raise ValueError(f"No network configuration found for '{name}'")
    return p


def plan_filepath(name: str) -> Path:
    p = PLANS_DIR / f"{name}.yml"
    if not p.exists():
        raise ValueError(f"No deployment plan found for '{name}'")
    return p


def resolve_contracts(
    references: Iterable[str], known: Dict[str, int], resolver: Callable[[str], int] = to_felt
) -> Dict[str, int]:
    """
    Maps each reference, either a known contract name or a literal address,
    to an address, keeping the given order.
    """
    contracts = dict()
    for reference in references:
        if reference in known:
            contracts[reference] = known[reference]
            continue
        try:
            contracts[reference] = resolver(reference)
        except (TypeError, ValueError):
            raise ValueError(
                f"'{reference}' is neither a recorded contract name nor an address."
            )
    return contracts
