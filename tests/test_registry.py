import json

import pytest

from starkops.registry import (
    DeploymentRecord,
    PendingDeployment,
    RegistryEntry,
    contracts_from_registry,
    pending_filepath,
    read_registry,
    resolve_contract_references,
    write_registry,
)

CHAIN_ID = "SN_SEPOLIA"


def entry(name, address, chain_id=CHAIN_ID, initialized=True):
    return RegistryEntry(
        chain_id=chain_id,
        name=name,
        class_hash=0xC1A55,
        address=address,
        tx_hash=0x7700,
        deployer=0xD3,
        initialized=initialized,
    )


def test_record_is_append_only():
    record = DeploymentRecord(CHAIN_ID, [entry("Staking", 0x57A)])
    record.add(entry("Minter", 0x3177))

    assert list(record) == ["Staking", "Minter"]
    assert record.address_of("Minter") == 0x3177
    with pytest.raises(ValueError, match="already recorded"):
        record.add(entry("Staking", 0x999))
    with pytest.raises(ValueError):
        record.add(entry("Token", 0x70, chain_id="SN_MAIN"))


def test_mark_initialized():
    record = DeploymentRecord(CHAIN_ID, [entry("Minter", 0x3177, initialized=False)])
    record.mark_initialized("Minter")
    assert record["Minter"].initialized
    assert record["Minter"].address == 0x3177


def test_save_and_load(tmp_path):
    filepath = tmp_path / "registry.json"
    record = DeploymentRecord(CHAIN_ID, [entry("Staking", 0x57A), entry("Minter", 0x3177, initialized=False)])
    record.save(filepath)

    data = json.loads(filepath.read_text())
    assert data[CHAIN_ID]["Staking"]["address"] == "0x57a"
    assert data[CHAIN_ID]["Minter"]["initialized"] is False

    loaded = DeploymentRecord.load(filepath, CHAIN_ID)
    assert loaded.entries() == record.entries()
    assert len(DeploymentRecord.load(filepath, "SN_MAIN")) == 0
    assert len(DeploymentRecord.load(tmp_path / "missing.json", CHAIN_ID)) == 0


def test_write_registry_keeps_other_chains(tmp_path):
    filepath = tmp_path / "registry.json"
    write_registry([entry("Token", 0x70, chain_id="SN_MAIN")], filepath)
    write_registry([entry("Staking", 0x57A)], filepath)

    entries = read_registry(filepath)
    assert {(e.chain_id, e.name) for e in entries} == {("SN_MAIN", "Token"), (CHAIN_ID, "Staking")}


def test_write_registry_never_drops_entries(tmp_path):
    filepath = tmp_path / "registry.json"
    write_registry([entry("Staking", 0x57A), entry("Minter", 0x3177)], filepath)

    written = write_registry([entry("Staking", 0x999)], filepath)

    assert written == tmp_path / "registry.unmerged.json"
    assert contracts_from_registry(filepath, CHAIN_ID) == {"Staking": 0x57A, "Minter": 0x3177}


def test_resolve_contract_references(tmp_path):
    filepath = tmp_path / "registry.json"
    write_registry([entry("Staking", 0x57A)], filepath)

    contracts = resolve_contract_references(["Staking", "0x3177"], filepath, CHAIN_ID)
    assert contracts == {"Staking": 0x57A, "0x3177": 0x3177}

    with pytest.raises(ValueError, match="Minter"):
        resolve_contract_references(["Minter"], filepath, CHAIN_ID)
    assert resolve_contract_references(["0x1"], None, CHAIN_ID) == {"0x1": 1}


def test_pending_deployments_survive_reload(tmp_path):
    filepath = tmp_path / "registry.json"
    record = DeploymentRecord(CHAIN_ID, [entry("Staking", 0x57A)])
    record.add_pending(PendingDeployment(name="Minter", class_hash=0xC1A55, tx_hash=0x7701))
    record.save(filepath)

    assert json.loads(pending_filepath(filepath).read_text()) == {
        CHAIN_ID: {"Minter": {"class_hash": "0xc1a55", "tx_hash": "0x7701"}}
    }
    loaded = DeploymentRecord.load(filepath, CHAIN_ID)
    assert list(loaded) == ["Staking"]
    assert loaded.pending["Minter"].tx_hash == 0x7701

    loaded.add(entry("Minter", 0x3177))
    loaded.save(filepath)

    assert loaded.pending == {}
    assert not pending_filepath(filepath).exists()
    assert list(DeploymentRecord.load(filepath, CHAIN_ID)) == ["Staking", "Minter"]


def test_recorded_instance_cannot_become_pending():
    record = DeploymentRecord(CHAIN_ID, [entry("Staking", 0x57A)])
    with pytest.raises(ValueError, match="already recorded"):
        record.add_pending(PendingDeployment(name="Staking", class_hash=0xC1A55, tx_hash=0x7701))
