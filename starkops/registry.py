import json
from collections import OrderedDict, defaultdict
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional

from starkops.calldata import felt_to_hex, to_felt
from starkops.utils import _load_json, resolve_contracts

ChainId = str
ContractName = str


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class RegistryEntry(NamedTuple):
    """Represents a single deployed contract instance."""

    chain_id: ChainId
    name: ContractName
    class_hash: int
    address: int
    tx_hash: int
    deployer: int
    initialized: bool = True


def _entry_to_json(entry: RegistryEntry) -> dict:
    return {
        "class_hash": felt_to_hex(entry.class_hash),
        "address": felt_to_hex(entry.address),
        "tx_hash": felt_to_hex(entry.tx_hash),
        "deployer": felt_to_hex(entry.deployer),
        "initialized": entry.initialized,
    }


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    for chain_id, entries in data.items():
        for contract_name, artifacts in entries.items():
            registry_entry = RegistryEntry(
                chain_id=chain_id,
                name=contract_name,
                class_hash=to_felt(artifacts["class_hash"]),
                address=to_felt(artifacts["address"]),
                tx_hash=to_felt(artifacts["tx_hash"]),
                deployer=to_felt(artifacts["deployer"]),
                initialized=artifacts.get("initialized", True),
            )
            registry_entries.append(registry_entry)
    return registry_entries


def _find_conflicts(existing_data: dict, data: dict) -> List[str]:
    conflicts = list()
    for chain_id, contracts in data.items():
        for name, artifacts in existing_data.get(chain_id, {}).items():
            replacement = contracts.get(name)
            if replacement is None or replacement["address"] != felt_to_hex(
                to_felt(artifacts["address"])
            ):
                conflicts.append(f"{name} on {chain_id}")
    return conflicts


def write_registry(entries: List[RegistryEntry], filepath: Path, silent: bool = False) -> Path:
    """
    Writes registry entries to a file. Chains not present in `entries` are kept
    as they are. An existing chain section is only replaced when every contract
    it records is still present in `entries` at the same address.
    """
    if not entries:
        if not silent:
            print("No entries provided.")
        return filepath

    data = defaultdict(dict)
    for entry in entries:
        data[entry.chain_id][entry.name] = _entry_to_json(entry)

    filepath.parent.mkdir(parents=True, exist_ok=True)

    if filepath.exists():
        existing_data = _load_json(filepath)
        conflicts = _find_conflicts(existing_data=existing_data, data=data)
        if conflicts:
            filepath = filepath.with_suffix(".unmerged.json")
            print(
                f"(!) Existing entries would be dropped or moved: {', '.join(conflicts)}.\n"
                f"Writing to {filepath} to avoid overwriting existing data."
            )
        else:
            existing_data.update(data)
            data = existing_data
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath


def contracts_from_registry(filepath: Path, chain_id: ChainId) -> Dict[ContractName, int]:
    """Returns contract addresses by name for one chain of a registry."""
    contracts = OrderedDict()
    for registry_entry in read_registry(filepath=filepath):
        if registry_entry.chain_id != chain_id:
            continue
        contracts[registry_entry.name] = registry_entry.address
    return contracts


def resolve_contract_references(
    references: Iterable[str], filepath: Optional[Path], chain_id: ChainId
) -> Dict[ContractName, int]:
    """Maps registry names or hex addresses to addresses, in the given order."""
    known = dict()
    if filepath is not None:
        known = contracts_from_registry(filepath=filepath, chain_id=chain_id)
    return resolve_contracts(references, known=known)


class PendingDeployment(NamedTuple):
    """A deploy confirmed on chain whose instance address has not been read back yet."""

    name: ContractName
    class_hash: int
    tx_hash: int


def pending_filepath(filepath: Path) -> Path:
    return filepath.with_suffix(".pending.json")


def _read_pending(filepath: Path, chain_id: ChainId) -> List[PendingDeployment]:
    data = _load_json(filepath)
    return [
        PendingDeployment(
            name=name,
            class_hash=to_felt(deployment["class_hash"]),
            tx_hash=to_felt(deployment["tx_hash"]),
        )
        for name, deployment in data.get(chain_id, {}).items()
    ]


class DeploymentRecord:
    """
    Append-only record of the instances deployed on one chain, keyed by step name.
    Entries are never rewritten; only the initialization flag may go from false to true.

    Confirmed deploys whose address is still unknown are kept as pending until
    they are recorded, so a later run recovers them instead of deploying again.
    """

    def __init__(
        self,
        chain_id: ChainId,
        entries: Optional[Iterable[RegistryEntry]] = None,
        pending: Optional[Iterable[PendingDeployment]] = None,
    ):
        self.chain_id = chain_id
        self._entries: Dict[ContractName, RegistryEntry] = OrderedDict()
        self.pending: Dict[ContractName, PendingDeployment] = OrderedDict()
        for entry in entries or ():
            self.add(entry)
        for deployment in pending or ():
            self.add_pending(deployment)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __getitem__(self, name: ContractName) -> RegistryEntry:
        return self._entries[name]

    def __iter__(self) -> Iterator[ContractName]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[RegistryEntry]:
        return list(self._entries.values())

    def address_of(self, name: ContractName) -> int:
        return self._entries[name].address

    def add(self, entry: RegistryEntry) -> None:
        if entry.chain_id != self.chain_id:
            raise ValueError(f"Entry for chain {entry.chain_id} added to record of {self.chain_id}.")
        existing = self._entries.get(entry.name)
        if existing is not None:
            raise ValueError(
                f"{entry.name} is already recorded at {hex(existing.address)} on {self.chain_id}."
            )
        self._entries[entry.name] = entry
        self.pending.pop(entry.name, None)

    def add_pending(self, deployment: PendingDeployment) -> None:
        if deployment.name in self._entries:
            raise ValueError(f"{deployment.name} is already recorded on {self.chain_id}.")
        self.pending[deployment.name] = deployment

    def mark_initialized(self, name: ContractName) -> None:
        entry = self._entries[name]
        if not entry.initialized:
            self._entries[name] = entry._replace(initialized=True)

    @classmethod
    def load(cls, filepath: Path, chain_id: ChainId) -> "DeploymentRecord":
        """Loads the record of a chain; a missing file is an empty record."""
        entries, pending = list(), list()
        if filepath.exists():
            entries = [entry for entry in read_registry(filepath) if entry.chain_id == chain_id]
        if pending_filepath(filepath).exists():
            pending = _read_pending(pending_filepath(filepath), chain_id=chain_id)
        return cls(chain_id=chain_id, entries=entries, pending=pending)

    def save(self, filepath: Path) -> Path:
        self._save_pending(pending_filepath(filepath))
        return write_registry(entries=self.entries(), filepath=filepath, silent=True)

    def _save_pending(self, filepath: Path) -> None:
        data = _load_json(filepath) if filepath.exists() else dict()
        data.pop(self.chain_id, None)
        if self.pending:
            data[self.chain_id] = {
                deployment.name: {
                    "class_hash": felt_to_hex(deployment.class_hash),
                    "tx_hash": felt_to_hex(deployment.tx_hash),
                }
                for deployment in self.pending.values()
            }

        if data:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            with open(filepath, "w") as file:
                json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)
        elif filepath.exists():
            filepath.unlink()
