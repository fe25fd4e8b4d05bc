#!/usr/bin/python3

import click

from starkops.errors import StarkOpsError
from starkops.options import (
    auto_option,
    class_hash_option,
    contracts_option,
    network_option,
    registry_filepath_option,
    signer_option,
)
from starkops.registry import resolve_contract_references
from starkops.timelock import UpgradeCoordinator


@click.command()
@network_option
@signer_option
@auto_option
@registry_filepath_option
@contracts_option
@class_hash_option
def cli(network, signer, auto, registry_filepath, contracts, class_hash):
    """Schedule an upgrade of one or more contracts to a declared class."""
    click.echo(f"Connected to {network.name} network.")
    contracts = resolve_contract_references(contracts, registry_filepath, network.chain_id)
    transactor = network.transactor(signer=signer, autosign=auto)
    coordinator = UpgradeCoordinator(executor=transactor.executor, transactor=transactor)

    results = coordinator.run_batch(
        contracts,
        action=lambda address, name: coordinator.schedule(address, class_hash, name=name),
    )

    failed = [name for name, result in results.items() if isinstance(result, StarkOpsError)]
    for name, result in results.items():
        if name not in failed:
            click.secho(f"    {name}: scheduled, ready at {result.ready_time}", fg="green")
    if failed:
        raise click.ClickException(f"Failed to schedule upgrade of {', '.join(failed)}.")


if __name__ == "__main__":
    cli()
