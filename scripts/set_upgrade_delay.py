#!/usr/bin/python3

import click

from starkops.errors import StarkOpsError
from starkops.options import (
    auto_option,
    contracts_option,
    delay_option,
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
@delay_option
def cli(network, signer, auto, registry_filepath, contracts, delay):
    """Set the upgrade delay of one or more contracts."""
    click.echo(f"Connected to {network.name} network.")
    contracts = resolve_contract_references(contracts, registry_filepath, network.chain_id)
    transactor = network.transactor(signer=signer, autosign=auto)
    coordinator = UpgradeCoordinator(executor=transactor.executor, transactor=transactor)

    results = coordinator.run_batch(
        contracts,
        action=lambda address, name: coordinator.set_delay(address, delay, name=name),
    )

    failed = list()
    for name, result in results.items():
        if isinstance(result, StarkOpsError):
            click.secho(f"    {name}: {result}", fg="red")
            failed.append(name)
        elif result:
            click.secho(f"    {name}: delay set to {delay}s", fg="green")
        else:
            click.secho(f"    {name}: unchanged", fg="yellow")

    if failed:
        raise click.ClickException(f"Failed to set upgrade delay of {', '.join(failed)}.")


if __name__ == "__main__":
    cli()
